"""
HanPin FastAPI 服务

提供 RESTful API 接口
"""

import os
import time
import uuid
from typing import Dict, List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from hanpin.engine import ConfigError, PersistenceFailure, PinyinConverter, create_converter, get_api_logger

# 初始化日志
logger = get_api_logger()


# ===== 请求/响应模型 =====

class ConvertRequest(BaseModel):
    """转换请求"""
    text: str = Field(..., description="待转换文本", max_length=10000)
    separator: str = Field(" ", description="拼音分隔符", max_length=8)
    with_tone: bool = Field(False, description="是否带声调")
    special_chars: str = Field("", description="特殊字符处理: keep / delete / replace，空值使用默认")
    temp_map: Optional[Dict[str, str]] = Field(None, description="本次请求的临时读音映射")


class ConvertResponse(BaseModel):
    """转换响应"""
    text: str
    pinyin: str


class SlugResponse(BaseModel):
    text: str
    slug: str


class MergeRequest(BaseModel):
    force: bool = Field(False, description="忽略阈值和时间间隔")


class MergeResponse(BaseModel):
    success: List[str]
    fail: List[dict]
    merged: Dict[str, List[str]]
    skipped: Dict[str, List[str]]


class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    version: str


# ===== 全局转换器实例 =====
converter: Optional[PinyinConverter] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    global converter

    logger.info("HanPin API 服务启动")
    if converter is None:
        logger.info("正在初始化转换器...")
        converter = create_converter()  # 读取 HANPIN_* 环境变量
    logger.info("转换器初始化完成")

    yield

    logger.info("正在关闭转换器...")
    try:
        converter.save()
    except PersistenceFailure as e:
        logger.error(f"关闭时保存失败: {e}")
    converter = None
    logger.info("HanPin API 服务已停止")


# ===== FastAPI 应用 =====
app = FastAPI(
    title="HanPin API",
    description="汉字转拼音引擎 API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===== 请求日志中间件 =====

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """记录所有请求的详细日志"""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()

    client_ip = request.client.host if request.client else "unknown"
    method = request.method
    path = request.url.path
    query = str(request.query_params) if request.query_params else ""

    logger.info(f"[{request_id}] --> {method} {path} {query} | IP: {client_ip}",
                extra={"request_id": request_id})

    try:
        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code

        log_level = "info" if status_code < 400 else "warning" if status_code < 500 else "error"
        getattr(logger, log_level)(
            f"[{request_id}] <-- {status_code} | {elapsed_ms:.2f}ms",
            extra={"request_id": request_id, "duration_ms": round(elapsed_ms, 2)},
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

        return response

    except Exception as e:
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.error(f"[{request_id}] <-- ERROR | {elapsed_ms:.2f}ms | {type(e).__name__}: {e}",
                     extra={"request_id": request_id, "duration_ms": round(elapsed_ms, 2)})
        raise


def _require_converter() -> PinyinConverter:
    if converter is None:
        logger.error("转换器未就绪，拒绝请求")
        raise HTTPException(status_code=503, detail="转换器未就绪")
    return converter


# ===== API 路由 =====

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """健康检查"""
    from hanpin import __version__
    return HealthResponse(
        status="healthy" if converter else "not_ready",
        version=__version__,
    )


@app.post("/convert", response_model=ConvertResponse)
def convert_text(request: ConvertRequest):
    """汉字转拼音"""
    conv = _require_converter()

    if not request.text.strip():
        logger.warning("无效请求: 空文本")
        raise HTTPException(status_code=400, detail="文本不能为空")

    try:
        pinyin = conv.convert(
            request.text,
            separator=request.separator,
            with_tone=request.with_tone,
            special_chars=request.special_chars,
            temp_map=request.temp_map,
        )
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.debug(f"转换: '{request.text[:20]}' -> '{pinyin[:40]}'")
    return ConvertResponse(text=request.text, pinyin=pinyin)


@app.get("/slug", response_model=SlugResponse)
def make_slug(text: str, separator: str = "-"):
    """生成 URL slug"""
    conv = _require_converter()
    if not text.strip():
        raise HTTPException(status_code=400, detail="文本不能为空")
    return SlugResponse(text=text, slug=conv.slug(text, separator))


@app.get("/stats")
def get_stats():
    """获取转换器统计信息"""
    conv = _require_converter()
    stats = conv.stats()
    logger.info(f"统计查询: 转换 {stats['conversions']} 次")
    return stats


@app.post("/merge", response_model=MergeResponse)
def merge(request: MergeRequest):
    """执行自学习字典合并"""
    conv = _require_converter()
    report = conv.execute_merge(force=request.force)
    logger.info(f"合并: 成功 {report.success}，失败 {len(report.fail)}")
    return MergeResponse(**report.to_dict())


# ===== 启动入口 =====

def main():
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    logger.info(f"启动 HanPin API 服务: http://{host}:{port}")
    logger.info(f"API 文档: http://{host}:{port}/docs")
    logger.info(f"日志级别: {log_level.upper()}")

    uvicorn.run(
        "hanpin.api.server:app",
        host=host,
        port=port,
        reload=False,
        workers=1,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
