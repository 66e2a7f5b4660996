import uvicorn

from .config import get_settings

if __name__ == "__main__":
    uvicorn.run("areassist.main:app", host="0.0.0.0", port=get_settings().port)
