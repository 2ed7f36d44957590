from typing import Callable, Tuple, Type, TypeVar

from adms_server.shared.logger import app_logger

T = TypeVar("T")


def call_with_refresh(
    call: Callable[[], T],
    refresh: Callable[[], None],
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "remote call",
) -> T:
    """
    Run ``call``; if it raises one of ``retry_on``, run ``refresh`` and try once more.

    Used around remote calls whose failure is usually stale credentials or
    configuration. The second failure propagates to the caller.

    Example:
        >>> call_with_refresh(lambda: client.post(batch), client.reload_config)
    """
    try:
        return call()
    except retry_on as first_error:
        app_logger.warning(f"{label} failed ({first_error}); refreshing and retrying once")
        refresh()
        return call()
