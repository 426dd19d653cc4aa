"""
API客户端模块

提供与外部REST API集成的客户端实现
"""
from .base import (
    BaseAPIClient,
    APIResponse,
    APIError,
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TransportError,
)

__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "AuthenticationError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "TransportError",
]
