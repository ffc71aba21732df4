import uvicorn

from config import HTTP_HOST, HTTP_PORT

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        reload=True,
        # Only source files matter to the reloader
        reload_excludes=["tests/*", ".env"]
    )
