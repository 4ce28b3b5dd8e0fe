from .firebase_gateway import FirebasePushGateway, PushGateway

__all__ = ["FirebasePushGateway", "PushGateway"]
