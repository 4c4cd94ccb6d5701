"""Backend for the slide deck -> SCORM 1.2 worker.

This package intentionally keeps FastAPI route handlers thin:
- per-job workspace lifecycle + startup sweep
- external conversion stages (soffice, pdftoppm)
- slide ordering, SCORM document rendering and streamed ZIP output

Security note:
Job workspace names are unguessable UUID4 hex strings. Never log or expose
filesystem paths or tool stderr in responses.
"""
