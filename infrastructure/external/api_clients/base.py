"""
REST API客户端基类

提供通用的HTTP请求功能，包括：
- 幂等请求自动重试（GET/HEAD/OPTIONS，或调用方显式声明）
- 错误处理
- 请求/响应日志
- 超时控制
"""
import asyncio
import json
from typing import Dict, Any, Optional, Union
from dataclasses import dataclass
import httpx
from pydantic import BaseModel
import logging
from datetime import datetime

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

logger = logging.getLogger(__name__)


# 只有这些方法默认可以安全重试；写操作需调用方显式声明幂等
IDEMPOTENT_METHODS = {"GET", "HEAD", "OPTIONS"}


@dataclass
class APIResponse:
    """API响应封装"""
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        """判断请求是否失败"""
        return self.status_code >= 400

    def json(self) -> Any:
        """获取JSON响应"""
        if self.data is not None:
            return self.data
        return json.loads(self.raw_content)


class APIError(Exception):
    """API错误基类"""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[APIResponse] = None,
        request_id: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.response = response
        self.request_id = request_id
        super().__init__(self.message)

    def __str__(self):
        parts = [self.message]
        if self.status_code:
            parts.append(f"Status: {self.status_code}")
        if self.request_id:
            parts.append(f"Request ID: {self.request_id}")
        return " | ".join(parts)


class RateLimitError(APIError):
    """速率限制错误"""
    pass


class AuthenticationError(APIError):
    """认证错误"""
    pass


class NotFoundError(APIError):
    """资源未找到错误"""
    pass


class ServerError(APIError):
    """服务器错误"""
    pass


class TransportError(APIError):
    """超时或网络错误（未收到响应）"""
    pass


class RetryableAPIError(APIError):
    """可重试的API错误"""

    def __init__(self, message: str, status_code: Optional[int], response: Optional['APIResponse'], retry_after: Optional[float] = None):
        super().__init__(message=message, status_code=status_code, response=response, request_id=response.request_id if response else None)
        self.retry_after = retry_after


RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class BaseAPIClient:
    """
    REST API客户端基类

    提供通用的HTTP请求功能，子类可以继承并实现具体的API调用
    """

    def __init__(
        self,
        base_url: str,
        timeout: Union[float, httpx.Timeout] = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        verify_ssl: bool = True,
        debug: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        初始化API客户端

        Args:
            base_url: API基础URL
            timeout: 请求超时时间（秒）或 httpx.Timeout
            max_retries: 幂等请求的最大重试次数
            retry_delay: 重试延迟（秒）
            headers: 默认请求头
            verify_ssl: 是否验证SSL证书
            debug: 是否开启调试模式
            transport: 自定义传输层（测试时注入 httpx.MockTransport）
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout if isinstance(timeout, httpx.Timeout) else httpx.Timeout(timeout)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.verify_ssl = verify_ssl
        self.debug = debug
        self._transport = transport

        # 设置默认请求头
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "Order-Reconciler/1.0"
        }
        if headers:
            self.default_headers.update(headers)

        # 创建HTTP客户端
        self._client: Optional[httpx.AsyncClient] = None

    @property
    async def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify_ssl,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """关闭HTTP客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """构建完整URL"""
        endpoint = endpoint.lstrip('/')
        return f"{self.base_url}/{endpoint}"

    def _log_request(self, method: str, url: str, **kwargs):
        """记录请求日志"""
        if self.debug:
            logger.debug(
                f"API Request: {method} {url}",
                extra={
                    "method": method,
                    "url": url,
                    "params": kwargs.get("params"),
                    "json": kwargs.get("json"),
                }
            )

    def _log_response(self, response: APIResponse):
        """记录响应日志"""
        if self.debug:
            logger.debug(
                f"API Response: {response.status_code}",
                extra={
                    "status_code": response.status_code,
                    "elapsed_ms": response.elapsed_ms,
                    "request_id": response.request_id,
                }
            )

    @staticmethod
    def _error_message(status_code: int, response: APIResponse) -> str:
        error_message = f"API request failed with status {status_code}"
        data = response.data
        if isinstance(data, dict):
            found = data.get("errors") or data.get("error") or data.get("message") or data.get("detail")
            if found:
                # Shopify 返回 {"errors": {"base": ["..."]}} 或字符串
                return found if isinstance(found, str) else json.dumps(found, ensure_ascii=False)
        return error_message

    def _handle_error_response(self, status_code: int, response: APIResponse):
        """处理错误响应"""
        error_map = {
            400: APIError,
            401: AuthenticationError,
            403: AuthenticationError,
            404: NotFoundError,
            429: RateLimitError,
            500: ServerError,
            502: ServerError,
            503: ServerError,
            504: ServerError
        }

        error_class = error_map.get(status_code, ServerError if status_code >= 500 else APIError)
        raise error_class(
            message=self._error_message(status_code, response),
            status_code=status_code,
            response=response,
            request_id=response.request_id
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Union[Dict[str, Any], BaseModel]] = None,
        headers: Optional[Dict[str, str]] = None,
        idempotent: Optional[bool] = None,
        **kwargs
    ) -> APIResponse:
        """
        发送HTTP请求

        Args:
            method: HTTP方法
            endpoint: API端点
            params: 查询参数
            json_data: JSON数据
            headers: 请求头
            idempotent: 是否允许重试；默认仅 GET/HEAD/OPTIONS
            **kwargs: 其他httpx参数

        Returns:
            APIResponse: API响应

        Raises:
            APIError: API错误
        """
        method = method.upper()
        if idempotent is None:
            idempotent = method in IDEMPOTENT_METHODS

        # 构建URL
        url = self._build_url(endpoint)

        # 合并请求头
        request_headers = {**self.default_headers}
        if headers:
            request_headers.update(headers)

        # 处理JSON数据
        if isinstance(json_data, BaseModel):
            json_data = json_data.model_dump(mode="json", exclude_unset=True)

        # 记录请求
        self._log_request(method, url, params=params, json=json_data)

        # 发送请求
        async def _send_once() -> APIResponse:
            start_time = datetime.now()
            client = await self.client
            response = await client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=request_headers,
                **kwargs
            )

            elapsed = (datetime.now() - start_time).total_seconds() * 1000

            content_type = response.headers.get("content-type", "")
            response_data = None

            if "application/json" in content_type:
                try:
                    response_data = response.json()
                except json.JSONDecodeError:
                    response_data = None

            api_response = APIResponse(
                status_code=response.status_code,
                headers=dict(response.headers),
                data=response_data,
                raw_content=response.content,
                elapsed_ms=elapsed,
                request_id=response.headers.get("x-request-id")
            )

            self._log_response(api_response)

            if api_response.is_error and api_response.status_code in RETRY_STATUS_CODES:
                retry_after: Optional[float] = None
                if api_response.status_code == 429:
                    retry_header = api_response.headers.get("retry-after")
                    try:
                        if retry_header:
                            retry_after = float(retry_header)
                    except (TypeError, ValueError):
                        retry_after = None
                    if retry_after and idempotent:
                        await asyncio.sleep(retry_after)

                raise RetryableAPIError(
                    message=f"Transient API error with status {api_response.status_code}",
                    status_code=api_response.status_code,
                    response=api_response,
                    retry_after=retry_after,
                )

            if api_response.is_error:
                self._handle_error_response(api_response.status_code, api_response)

            return api_response

        attempts = self.max_retries + 1 if idempotent else 1
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self.retry_delay,
                min=self.retry_delay,
                max=self.retry_delay * 8
            ),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RetryableAPIError)),
            before_sleep=before_sleep_log(logger, logging.WARNING)
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await _send_once()
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timeout: {method} {endpoint}") from exc
        except httpx.NetworkError as exc:
            raise TransportError(f"Network error: {exc}") from exc
        except RetryableAPIError as exc:
            if exc.response:
                self._handle_error_response(exc.status_code or exc.response.status_code, exc.response)
            raise APIError(exc.message) from exc
        raise APIError("Request was not attempted")  # pragma: no cover
