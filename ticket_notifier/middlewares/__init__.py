from .request_id_middleware import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
