from tinydomains.server.app import EdgeServer, create_server

__all__ = ["EdgeServer", "create_server"]
