from .schemas import PublishRequest
