# errors raised by the fraud screening layer
# rejections carry a human readable message plus structured context


class FraudRejected(Exception):
    """an order (or one of its checks) was refused by fraud protection"""

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> dict:
        return {'message': self.message, 'context': self.context}


class ValidationFailed(FraudRejected):
    """a subject's statistics breached one of its limit rules"""


class AssetSuspended(FraudRejected):
    """the asset is already recorded as suspended"""


class InvalidLimitRule(ValueError):
    """limit configuration could not be parsed"""
