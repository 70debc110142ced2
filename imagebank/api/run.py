"""Entry point for the image bank API server."""
import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Image bank API server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode (exposes /docs)")
    args = parser.parse_args()

    if args.debug:
        os.environ["DEBUG"] = "true"

    uvicorn.run(
        "imagebank.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
