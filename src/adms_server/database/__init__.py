from adms_server.database.connection import db_manager

__all__ = ["db_manager"]
