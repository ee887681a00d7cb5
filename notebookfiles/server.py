from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from .backend import select_backend
from .error_handling import setup_logging, handle_error, log_operation, WorkspaceError, ValidationError
from .file_manager import FileManager
from .models import FILE
from .locator import find
from .sorting import setup_collation
from .workspace import TREE_REPLACED, MUTATION_COMPLETED
from .workspace_manager import WorkspaceManager
from . import config

logger = logging.getLogger(__name__)


def tree_payload(manager: WorkspaceManager):
    tree = manager.tree
    return {
        "tree": tree.to_dict() if tree is not None else None,
        "counts": manager.state.counts,
        "generation": manager.state.committed_generation,
    }


def create_app(manager: Optional[WorkspaceManager] = None) -> FastAPI:
    """Build the service around one workspace manager (created from config if not given)"""
    if manager is None:
        manager = WorkspaceManager(select_backend())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await manager.close()

    app = FastAPI(lifespan=lifespan)
    app.state.manager = manager
    app.state.file_manager = FileManager(manager)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkspaceError)
    async def workspace_error_handler(request: Request, error: WorkspaceError):
        status_code = 502 if error.kind == "TransportError" else 400
        return JSONResponse(status_code=status_code, content=handle_error(logger, error, request.url.path))

    @app.get("/health")
    async def health_check():
        """Simple health check endpoint"""
        return {"status": "ok", "service": "notebookfiles"}

    @app.get("/tree")
    async def get_tree(request: Request):
        workspace = request.app.state.manager
        await workspace.ensure_loaded()
        return tree_payload(workspace)

    @app.get("/search")
    async def search(request: Request, q: str = ""):
        workspace = request.app.state.manager
        await workspace.ensure_loaded()
        return {"query": q, "visibility": workspace.search(q)}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        logger.debug("New WebSocket connection attempt...")
        await websocket.accept()
        workspace = websocket.app.state.manager
        file_manager = websocket.app.state.file_manager

        async def on_tree_replaced(tree):
            await websocket.send_json({"type": TREE_REPLACED, "data": tree_payload(workspace)})

        async def on_mutation_completed(result):
            await websocket.send_json({"type": MUTATION_COMPLETED, "data": result.to_dict()})

        unsubscribe = [
            workspace.subscribe(TREE_REPLACED, on_tree_replaced),
            workspace.subscribe(MUTATION_COMPLETED, on_mutation_completed),
        ]
        try:
            while True:
                data = await websocket.receive_json()
                command = data.get("command")
                params = data.get("params", {})
                log_operation(logger, command, **params)
                try:
                    response = await dispatch(workspace, file_manager, command, params)
                    await websocket.send_json({"type": "success", "command": command, "data": response})
                except (WorkspaceError, KeyError) as e:
                    await websocket.send_json(handle_error(logger, e, command))
        except WebSocketDisconnect:
            pass
        finally:
            for remove in unsubscribe:
                remove()
            logger.info("WebSocket connection closed")

    return app


async def dispatch(workspace: WorkspaceManager, file_manager: FileManager, command: str, params: dict):
    """Run one websocket command and return the data for its success reply"""
    if command == "load":
        await workspace.reload()
        return tree_payload(workspace)

    if command == "get_tree":
        await workspace.ensure_loaded()
        return tree_payload(workspace)

    if command == "search":
        await workspace.ensure_loaded()
        return {"query": params.get("query", ""), "visibility": workspace.search(params.get("query", ""))}

    if command == "is_pending":
        return {"path": params["path"], "pending": file_manager.is_mutation_pending(params["path"])}

    # Only a second, confirmed request may commit a sanitized name
    accept_sanitized = params.get("accept_sanitized") is True
    if command == "create":
        result = await file_manager.create(
            params["name"], params.get("parent"), params.get("type", FILE), accept_sanitized=accept_sanitized
        )
    elif command == "rename":
        result = await file_manager.rename(params["path"], params["new_name"], accept_sanitized=accept_sanitized)
    elif command == "move":
        if "target_dir" in params:
            result = await file_manager.move_into(params["path"], params["target_dir"])
        else:
            result = await file_manager.move(params["path"], params["new_path"], accept_sanitized=accept_sanitized)
    elif command == "delete_file":
        result = await file_manager.delete_file(params["path"])
    elif command == "delete_folder":
        result = await file_manager.delete_folder(params["path"], params.get("cascade") is True)
    elif command == "open":
        tree = await workspace.ensure_loaded()
        node = find(tree, params["path"])
        if node is None or not node.process_id:
            raise ValidationError("not_openable", {"path": params["path"]})
        return {"path": node.path, "url": workspace.backend.edit_url(node.process_id)}
    elif command == "watch_changes":
        directory = params.get("directory") or config.WATCH_DIR
        if not directory:
            raise ValidationError("no_directory")
        workspace.watch_directory(directory, asyncio.get_running_loop())
        return {"watching": directory}
    else:
        raise ValidationError("unknown_command", {"command": command})
    return result.to_dict()


def main():
    setup_logging()
    setup_collation()
    try:
        logger.info(f"Starting server on http://{config.HOST}:{config.PORT}")
        logger.info(f"WebSocket endpoint at ws://{config.HOST}:{config.PORT}/ws")
        uvicorn.run(
            create_app(),
            host=config.HOST,
            port=config.PORT,
            log_level=config.LOG_LEVEL.lower(),
            access_log=True
        )
    except Exception as e:
        logger.error(f"Failed to start server: {str(e)}")
        raise


if __name__ == "__main__":
    main()
