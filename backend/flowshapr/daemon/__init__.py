from flowshapr.daemon.app import create_app

__all__ = ["create_app"]
