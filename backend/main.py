import os
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from logger import setup_logging
from settings import settings

# 1. Logging
setup_logging(settings.get_log_level())

# 2. Setup App
app = FastAPI(title="Chat Completion Backend")

# 3. Setup CORS: allow all in development mode for ease of use
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 4. Attachments are served from the data directory
data_dir = settings.get_data_dir()
os.makedirs(data_dir, exist_ok=True)
app.mount("/data", StaticFiles(directory=data_dir), name="data")

# 5. Include Routers
from routers import chat, settings as settings_router
app.include_router(chat.router)
app.include_router(settings_router.router)


@app.get("/")
def read_root():
    return {"status": "Chat backend is running", "mounted": "/data"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
