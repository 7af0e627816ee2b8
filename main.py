import sys
import uvicorn

def run(port: int = 8000, reload: bool = False):
    """Run the API server"""
    uvicorn.run(
        "erp.main:app",  # Use string import
        host="0.0.0.0",
        port=port,
        reload=reload,
    )

if __name__ == "__main__":
    run(reload="--reload" in sys.argv)
