"""
Mosoteach Quiz Auto-Solver - FastAPI Server
Main entry point: configuration, run control and the progress event stream.
"""

import json
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from autoquiz import __version__
from autoquiz.api_utils import ChatModelClient
from autoquiz.config import ConfigStore, ModelProfile, Settings
from autoquiz.errors import CancelledByUser, ConfigError, QuizSolverError, ResolutionFailure, ServiceBusy
from autoquiz.service import SolverService

settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

config = ConfigStore(settings.config_path)
service = SolverService(config, settings)

MODEL_TEST_PROMPT = "请回复：测试成功"
MODEL_TEST_TIMEOUT = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.load()
    logger.info(f"Configuration loaded from {settings.config_path}")
    yield
    await service.stop()


app = FastAPI(
    title="Mosoteach Quiz Auto-Solver",
    description="Logs in to Mosoteach, answers pending quizzes with chat-completion models and submits them",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/")
async def root():
    """Root endpoint with API documentation."""
    html = """
    <!DOCTYPE html>
    <html>
    <head>
        <title>Mosoteach Quiz Auto-Solver</title>
        <meta charset="utf-8">
        <style>
            body { font-family: Arial, sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; background: #1a1a2e; color: #eee; }
            h1 { color: #00d9ff; }
            code { background: #16213e; padding: 2px 8px; border-radius: 4px; }
            pre { background: #16213e; padding: 15px; border-radius: 8px; overflow-x: auto; }
            .endpoint { background: #0f3460; padding: 15px; margin: 10px 0; border-radius: 8px; }
            .method { color: #00ff88; font-weight: bold; }
        </style>
    </head>
    <body>
        <h1>Mosoteach Quiz Auto-Solver</h1>
        <p>Answers pending Mosoteach quizzes with the configured models.</p>

        <h2>Endpoints</h2>
        <div class="endpoint">
            <span class="method">POST</span> <code>/api/start</code>
            <p>Start a run over all pending quizzes, or only the selected ones</p>
            <pre>{
  "quizUrls": ["https://www.mosoteach.cn/..."]
}</pre>
        </div>

        <div class="endpoint">
            <span class="method">POST</span> <code>/api/stop</code>
            <p>Cancel the running task and close its browser</p>
        </div>

        <div class="endpoint">
            <span class="method">GET</span> <code>/api/events</code>
            <p>Server-sent progress events</p>
        </div>

        <div class="endpoint">
            <span class="method">GET</span> <code>/api/quizzes</code>
            <p>Log in and list in-progress quizzes (cached at <code>/api/quizzes/cache</code>)</p>
        </div>

        <div class="endpoint">
            <span class="method">GET / POST</span> <code>/api/config</code>, <code>/api/models</code>
            <p>Account, submit delay and model profiles</p>
        </div>
    </body>
    </html>
    """
    return HTMLResponse(content=html)


class ConfigRequest(BaseModel):
    """Account settings update; empty fields keep the stored value."""
    user_name: Optional[str] = None
    password: Optional[str] = None
    submit_delay: Optional[int] = None


class ModelRequest(BaseModel):
    name: str
    enabled: bool = False
    base_url: str = ''
    api_key: str = ''
    model: str = ''


class StartRequest(BaseModel):
    quizUrl: Optional[str] = None
    quizUrls: Optional[List[str]] = None


def _stored_api_key(name: str) -> str:
    for profile in config.models:
        if profile.name == name:
            return profile.api_key
    return ''


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/api/status")
async def get_status():
    status = service.status()
    if not status['running']:
        _, status['message'] = config.is_ready()
    return status


@app.get("/api/config")
async def get_config():
    user = config.user_data
    return {
        "user_name": user.user_name,
        "has_password": bool(user.password),
        "has_cookie": bool(user.cookie),
        "masked_user": config.masked_username(),
        "submit_delay": config.submit_delay,
    }


@app.post("/api/config")
async def save_config(request: ConfigRequest):
    if request.user_name or request.password:
        user_name = request.user_name or config.user_data.user_name
        config.update_user(user_name, request.password)
    if request.submit_delay is not None:
        config.set_submit_delay(request.submit_delay)
    return {"success": True, "message": "配置保存成功"}


@app.get("/api/models")
async def get_models():
    """Model profiles with the API key replaced by a presence flag."""
    return [
        {
            "name": m.name,
            "enabled": m.enabled,
            "base_url": m.base_url,
            "model": m.model,
            "has_api_key": bool(m.api_key),
        }
        for m in config.models
    ]


@app.post("/api/models")
async def save_models(request: List[ModelRequest]):
    profiles = []
    for item in request:
        profile = ModelProfile(**item.model_dump())
        if not profile.api_key:
            profile.api_key = _stored_api_key(profile.name)
        profiles.append(profile)
    config.update_models(profiles)
    return {"success": True, "message": "模型配置保存成功"}


@app.post("/api/models/test")
async def test_model(request: ModelRequest):
    profile = ModelProfile(**request.model_dump())
    if not profile.api_key:
        profile.api_key = _stored_api_key(profile.name)

    if not profile.base_url or not profile.model or not profile.api_key:
        return {"success": False, "message": "请填写完整的配置（Base URL、模型名称、API Key）"}

    client = ChatModelClient(profile)
    try:
        answer = await asyncio.to_thread(client.get_answer, MODEL_TEST_PROMPT, MODEL_TEST_TIMEOUT)
    except ResolutionFailure as e:
        return {"success": False, "message": f"连接失败: {e}"}
    return {"success": True, "message": "连接成功", "reply": answer}


@app.post("/api/start")
async def start(request: Optional[StartRequest] = None):
    """
    Start answering.

    - quizUrls: answer only the selected quizzes
    - quizUrl: a single quiz
    - neither: every pending quiz of every open course
    """
    request = request or StartRequest()
    ready, message = config.is_ready()
    if not ready:
        return {"success": False, "message": message}

    quiz_urls = request.quizUrls or ([request.quizUrl] if request.quizUrl else None)
    if not service.start(quiz_urls):
        return {"success": False, "message": "任务正在运行中"}
    return {"success": True, "message": "任务已启动"}


@app.post("/api/stop")
async def stop():
    await service.stop()
    return {"success": True}


@app.post("/api/login")
async def login():
    try:
        success = await service.login()
    except ServiceBusy as e:
        return {"success": False, "message": str(e)}
    if success:
        return {"success": True, "message": "登录成功，Cookie已更新"}
    return {"success": False, "message": "登录失败"}


@app.get("/api/quizzes")
async def get_quizzes():
    try:
        quizzes = await service.fetch_quizzes()
    except ServiceBusy:
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "有任务正在运行中，请稍后再试"}
        )
    except CancelledByUser:
        return []
    except QuizSolverError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [q.to_dict() for q in quizzes]


@app.get("/api/quizzes/cache")
async def get_cached_quizzes():
    return [q.to_dict() for q in config.cached_quizzes()]


@app.get("/api/events")
async def events(request: Request):
    """Server-sent progress events; the first message confirms the connection."""
    queue = service.subscribe()

    async def stream():
        try:
            yield "data: " + json.dumps({"type": "connected", "message": "SSE连接成功"}, ensure_ascii=False) + "\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield "data: " + json.dumps(event.to_dict(), ensure_ascii=False) + "\n\n"
        finally:
            service.unsubscribe(queue)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request, exc):
    """Handle Pydantic validation errors."""
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid JSON body", "errors": exc.errors()}
    )


@app.exception_handler(ConfigError)
async def config_exception_handler(request, exc):
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": str(exc)}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
