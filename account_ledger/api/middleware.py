"""
HTTP middleware
"""

import time
import uuid

from fastapi import Request

from ..logging_config import get_logger, log_action


class RequestLogger:
    """Access log: one structured line per request, tagged with a correlation id"""
    
    def __init__(self, logger_name: str = "account_ledger.access"):
        self.logger = get_logger(logger_name)
    
    async def __call__(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        started = time.perf_counter()
        
        response = await call_next(request)
        
        elapsed_ms = (time.perf_counter() - started) * 1000
        log_action(
            self.logger, "info", f"{request.method} {request.url.path} {response.status_code}",
            action="http_request", correlation_id=correlation_id,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(elapsed_ms, 2)
            }
        )
        response.headers["X-Request-ID"] = correlation_id
        return response
