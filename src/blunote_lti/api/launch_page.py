"""
HTML bootstrap page returned after a successful launch.

The page embeds the session summary for the frontend and forwards the browser
to the frontend URL with the session id.
"""

from __future__ import annotations

import html
import json

from ..auth.oidc import build_redirect_url
from .models import SessionSummary


def _script_json(data: dict) -> str:
    # Keep "</script>" and friends from terminating the script element.
    return (
        json.dumps(data)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def render_launch_page(summary: SessionSummary, frontend_url: str) -> str:
    target = build_redirect_url(frontend_url, {"sessionId": summary.session_id})
    session_json = _script_json(summary.model_dump(mode="json"))
    course = html.escape(summary.course_name)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>BluNote Assistant - {course}</title>
  <style>
    body {{ margin: 0; padding: 0; font-family: sans-serif; }}
    #loading {{
      display: flex;
      align-items: center;
      justify-content: center;
      height: 100vh;
      flex-direction: column;
    }}
  </style>
</head>
<body>
  <div id="loading">
    <h2>Loading BluNote Assistant...</h2>
    <p>Course: {course}</p>
  </div>
  <script>
    window.__BLUNOTE_SESSION__ = {session_json};
    window.location.href = {_script_json(target)};
  </script>
</body>
</html>"""
