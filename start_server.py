"""Process launcher: the API under uvicorn, or the worker when RUN_MODE=worker."""
import uvicorn

from roofops import config

if __name__ == "__main__":
    if config.RUN_MODE == "worker":
        from roofops.worker import main

        main([])
    else:
        print(f"Starting RoofOps API on port {config.PORT}", flush=True)
        uvicorn.run(
            "roofops.app:app",
            host="0.0.0.0",
            port=config.PORT,
            log_level="info",
        )
