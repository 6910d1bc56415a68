"""
Browser review picker for generation sessions.

A small FastAPI app serves one page listing the images of the sessions under review; the
page saves keep/reject/regenerate choices back through a JSON API. ``serve`` runs it with
uvicorn until the page posts ``/api/done`` or the user presses Ctrl+C.
"""

import html
import threading
import webbrowser
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from loguru import logger
from pydantic import field_validator, model_validator

from uhd_skills.common import CamelModel
from uhd_skills.t2i.cost import format_cost
from uhd_skills.t2i.finalize import finalize_session
from uhd_skills.t2i.session import SelectionEntry, SelectionStatus, SessionStore


ReviewMode = Literal["single", "multi"]

DEFAULT_REVIEW_HOST = "127.0.0.1"
DEFAULT_REVIEW_PORT = 8765
MAX_REGENERATE_IMAGES = 6


class SelectionInput(CamelModel):
    filename: str
    status: SelectionStatus
    new_prompt: str | None = None
    num_images: int | None = None

    @field_validator("filename")
    @classmethod
    def _plain_filename(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "'filename' must be a non-empty string"
            raise ValueError(msg)
        if Path(value).name != value or "\\" in value:
            msg = "'filename' must not contain path segments"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _regenerate_fields(self) -> "SelectionInput":
        if self.status != "regenerate":
            self.new_prompt = None
            self.num_images = None
            return self
        if self.num_images is None:
            self.num_images = 1
        if not 1 <= self.num_images <= MAX_REGENERATE_IMAGES:
            msg = f"'numImages' must be an integer between 1 and {MAX_REGENERATE_IMAGES}"
            raise ValueError(msg)
        return self


class SessionPayload(CamelModel):
    session_id: str

    @field_validator("session_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            msg = "'sessionId' must be a non-empty string"
            raise ValueError(msg)
        return value.strip()


class SelectionsPayload(SessionPayload):
    selections: list[SelectionInput]


class FinalizePayload(SessionPayload):
    dest: str = "."


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def _validation_message(errors: Sequence[Any]) -> str:
    """First validation error as ``field: message``, without the ``body`` prefix."""
    if not errors:
        return "Invalid payload"
    first = errors[0]
    parts = [str(part) for part in first.get("loc", ()) if part != "body"]
    location = ".".join(parts)
    if first.get("type") == "missing" and location:
        return f"'{location}' is required"
    if first.get("type") == "json_invalid":
        return "Invalid payload"
    return f"{location}: {first['msg']}" if location else str(first["msg"])


def session_payload(store: SessionStore, session_id: str) -> dict[str, Any]:
    """Session data for the review page: flattened images plus any saved selections."""
    meta = store.read_meta(session_id)
    selections = store.read_selections(session_id)
    return {
        "id": meta.id,
        "status": meta.status,
        "command": meta.command,
        "createdAt": meta.created_at,
        "totalCost": meta.total_cost,
        "images": [
            {
                "filename": img.filename,
                "prompt": job.prompt,
                "model": job.model,
                "width": img.width,
                "height": img.height,
                "round": job.round,
                "jobIndex": index,
            }
            for index, job in enumerate(meta.jobs)
            for img in job.images
        ],
        "selections": {
            s.filename: s.to_json_dict() for s in (selections.selections if selections else [])
        },
    }


PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>UHD Review</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 1.5rem; background: #111; color: #eee; }}
header span {{ margin-right: 1.5rem; color: #aaa; }}
.grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(260px, 1fr)); gap: 1rem; }}
.card {{ background: #1c1c1c; border: 2px solid #333; border-radius: 8px; padding: .5rem; }}
.card.keep {{ border-color: #2e7d32; }} .card.reject {{ border-color: #c62828; opacity: .6; }}
.card.regenerate {{ border-color: #f9a825; }}
.card img {{ width: 100%; border-radius: 4px; }}
.card textarea {{ width: 100%; display: none; }} .card.regenerate textarea {{ display: block; }}
button {{ margin: .2rem; }}
</style>
</head>
<body>
<header>
<h1>UHD Review</h1>
<span>Sessions: {session_list}</span><span>Images: {image_count}</span>
<span>Jobs: {job_count}</span><span>Cost: {total_cost}</span>
</header>
<p>
<button id="save">Save selections</button>
<input id="dest" value="." size="24"> <button id="finalize">Finalize</button>
<button id="done">Done</button> <span id="message"></span>
</p>
<main id="sessions"></main>
<script>
const state = {{}};
let sessions = [];
const msg = (text) => {{ document.getElementById("message").textContent = text; }};
const post = (url, body) => fetch(url, {{
  method: "POST",
  headers: {{"Content-Type": "application/json"}},
  body: JSON.stringify(body),
}}).then((r) => r.json());

function render() {{
  const root = document.getElementById("sessions");
  root.replaceChildren();
  for (const s of sessions) {{
    const h = document.createElement("h2");
    h.textContent = `${{s.id}} (${{s.status}})`;
    const grid = document.createElement("div");
    grid.className = "grid";
    for (const img of s.images) {{
      const sel = state[s.id][img.filename];
      const card = document.createElement("div");
      card.className = "card " + (sel.status || "");
      const pic = document.createElement("img");
      const name = encodeURIComponent(img.filename);
      pic.src = `/sessions/${{encodeURIComponent(s.id)}}/images/${{name}}`;
      const caption = document.createElement("div");
      caption.textContent = `${{img.filename}} - ${{img.model}} r${{img.round}}`;
      card.append(pic, caption);
      for (const status of ["keep", "reject", "regenerate"]) {{
        const b = document.createElement("button");
        b.textContent = status;
        b.onclick = () => {{ sel.status = sel.status === status ? null : status; render(); }};
        card.append(b);
      }}
      const prompt = document.createElement("textarea");
      prompt.value = sel.newPrompt;
      prompt.oninput = () => {{ sel.newPrompt = prompt.value; }};
      card.append(prompt);
      grid.append(card);
    }}
    root.append(h, grid);
  }}
}}

async function save() {{
  for (const s of sessions) {{
    const marked = Object.entries(state[s.id]).filter(([, v]) => v.status);
    const selections = marked.map(([filename, v]) => v.status === "regenerate"
      ? {{filename, status: v.status, newPrompt: v.newPrompt, numImages: v.numImages}}
      : {{filename, status: v.status}});
    const res = await post("/api/selections", {{sessionId: s.id, selections}});
    if (!res.ok) {{ msg(res.error); return false; }}
  }}
  msg("Saved.");
  return true;
}}

document.getElementById("save").onclick = save;
document.getElementById("finalize").onclick = async () => {{
  if (!(await save())) return;
  for (const s of sessions) {{
    const dest = document.getElementById("dest").value;
    const res = await post("/api/finalize", {{sessionId: s.id, dest}});
    msg(res.ok ? `Copied ${{res.copied}} file(s).` : res.error);
  }}
}};
document.getElementById("done").onclick = async () => {{
  await post("/api/done", {{}});
  msg("Server stopped.");
}};

fetch("/api/sessions").then((r) => r.json()).then((data) => {{
  sessions = data.sessions;
  for (const s of sessions) {{
    state[s.id] = {{}};
    for (const img of s.images) {{
      const prev = s.selections[img.filename] || {{}};
      state[s.id][img.filename] = {{
        status: prev.status || null,
        newPrompt: prev.newPrompt || img.prompt,
        numImages: prev.numImages || 1,
      }};
    }}
  }}
  render();
}});
</script>
</body>
</html>
"""


def render_page(store: SessionStore, session_ids: list[str]) -> str:
    metas = [store.read_meta(session_id) for session_id in session_ids]
    return PAGE_TEMPLATE.format(
        session_list=html.escape(", ".join(session_ids)),
        image_count=sum(meta.image_count for meta in metas),
        job_count=sum(len(meta.jobs) for meta in metas),
        total_cost=html.escape(format_cost(sum(meta.total_cost for meta in metas))),
    )


def create_app(store: SessionStore, session_ids: list[str], mode: ReviewMode = "single") -> FastAPI:
    """
    Build the review application for a fixed set of sessions.

    Args:
        store: Session repository
        session_ids: Sessions the page may read and write; others get 400/404
        mode: ``single`` or ``multi`` session review

    Returns:
        FastAPI app; ``app.state.server`` may hold the uvicorn server to stop on ``/api/done``.

    """
    app = FastAPI(title="UHD Review", docs_url=None, redoc_url=None)
    app.state.server = None
    allowed = set(session_ids)

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def index() -> str:
        return render_page(store, session_ids)

    @app.get("/api/sessions")
    async def list_sessions() -> dict[str, Any]:
        return {"mode": mode, "sessions": [session_payload(store, sid) for sid in session_ids]}

    @app.get("/sessions/{session_id}/images/{filename}")
    async def session_image(session_id: str, filename: str) -> FileResponse:
        if session_id not in allowed:
            raise HTTPException(status_code=404, detail="Session not found")
        if Path(filename).name != filename:
            raise HTTPException(status_code=404, detail="Not found")
        path = store.images_dir(session_id) / filename
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path)

    @app.exception_handler(RequestValidationError)
    async def invalid_payload(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(_validation_message(exc.errors()))

    @app.post("/api/selections")
    async def save_selections(payload: SelectionsPayload) -> JSONResponse:
        if payload.session_id not in allowed:
            return _error("Session not in review set")

        entries = [
            SelectionEntry(
                filename=s.filename,
                status=s.status,
                new_prompt=s.new_prompt,
                num_images=s.num_images,
            )
            for s in payload.selections
        ]
        store.save_review(payload.session_id, entries)
        return JSONResponse({"ok": True})

    @app.post("/api/finalize")
    async def finalize(payload: FinalizePayload) -> JSONResponse:
        session_id = payload.session_id
        if session_id not in allowed:
            return _error("Session not in review set")
        try:
            copied = finalize_session(store, session_id, Path(payload.dest))
        except OSError as exc:
            logger.exception("review_finalize_failed", session=session_id)
            return _error(f"Finalize failed: {exc}", status_code=500)
        return JSONResponse({"ok": True, "copied": len(copied), "files": [str(p) for p in copied]})

    @app.post("/api/done")
    async def done() -> dict[str, Any]:
        server = app.state.server
        if server is not None:
            server.should_exit = True
        logger.info("review_server_stopping")
        return {"ok": True, "message": "Server shutting down."}

    return app


def serve(
    store: SessionStore,
    session_ids: list[str],
    mode: ReviewMode = "single",
    *,
    host: str = DEFAULT_REVIEW_HOST,
    port: int = DEFAULT_REVIEW_PORT,
    open_browser: bool = True,
) -> None:
    """Run the review app with uvicorn until ``/api/done`` or Ctrl+C."""
    app = create_app(store, session_ids, mode)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    app.state.server = server

    url = f"http://{host}:{port}"
    print(f"\nReview server running at {url}")  # noqa: T201
    print(  # noqa: T201
        f"Session: {session_ids[0]}" if mode == "single" else f"Sessions: {len(session_ids)}",
    )
    print("Press Ctrl+C to stop.\n")  # noqa: T201
    if open_browser:
        threading.Timer(0.5, webbrowser.open, args=(url,)).start()
    server.run()
    logger.info("review_server_stopped", url=url)
