"""业务包描述：主应用只通过这里声明的入口与业务包交互。"""

from __future__ import annotations

from dataclasses import dataclass
from logging import Logger
from typing import Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

ExceptionHandler = Callable[[Request, Exception], Awaitable[JSONResponse]]


@dataclass(frozen=True)
class AppPackage:
    """业务包的路由、配置、日志、建表入口与三类全局异常处理器。"""

    name: str
    api_router: APIRouter
    get_settings: Callable[[], object]
    setup_logging: Callable[[], None]
    logger: Logger
    init_db: Callable[[], None]
    create_response: Callable[..., dict]
    http_exception_handler: ExceptionHandler
    validation_exception_handler: ExceptionHandler
    generic_exception_handler: ExceptionHandler
