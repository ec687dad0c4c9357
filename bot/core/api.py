from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse

from services.transcript_store import TranscriptStore

# Transcripts are static documents with inline styles and no scripts.
TRANSCRIPT_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; style-src 'unsafe-inline'; img-src https: data:",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "private, max-age=300",
}


def create_api_app(store: TranscriptStore) -> FastAPI:
    app = FastAPI(title="Ticket Transcripts", version="1.0.0", docs_url=None, redoc_url=None)

    @app.get("/transcripts/{token}", response_class=HTMLResponse)
    async def transcript(token: str) -> HTMLResponse:
        content = store.load(token)
        if content is None:
            raise HTTPException(status_code=404, detail="Transcript not found or expired")
        return HTMLResponse(content=content, headers=TRANSCRIPT_HEADERS)

    return app
