"""Local web console: chat panel plus Mission Control timeline."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from src.kortex.runtime.service import get_runtime_service

app = FastAPI(title="Kortex Console")


class PromptRequest(BaseModel):
    message: str


class InputRequest(BaseModel):
    text: str = ""


@app.on_event("startup")
def _init_runtime() -> None:
    get_runtime_service().start(source="app")


@app.on_event("shutdown")
def _stop_runtime() -> None:
    get_runtime_service().stop(source="app")


@app.get("/health")
def health() -> dict:
    return get_runtime_service().health()


@app.post("/api/prompt")
def submit_prompt(req: PromptRequest) -> dict:
    return get_runtime_service().submit_prompt(message=req.message)


@app.post("/api/input")
def set_input(req: InputRequest) -> dict:
    return get_runtime_service().set_input(text=req.text)


@app.get("/api/status")
def status() -> dict:
    return get_runtime_service().status()


@app.get("/api/timeline")
def timeline(limit: int | None = None) -> dict:
    safe_limit = max(1, min(5000, int(limit))) if limit is not None else None
    return get_runtime_service().timeline(limit=safe_limit)


@app.get("/api/transcript")
def transcript() -> dict:
    return get_runtime_service().transcript()


@app.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
    html = """<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Kortex</title>
  <style>
    :root {
      --bg: #0d1117;
      --panel: #161b22;
      --ink: #e6edf3;
      --muted: #8b949e;
      --line: #30363d;
      --accent: #58a6ff;
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      height: 100vh;
      font-family: system-ui, sans-serif;
      background: var(--bg);
      color: var(--ink);
      display: grid;
      grid-template-columns: 1fr 1fr;
      gap: 12px;
      padding: 12px;
    }
    .panel {
      background: var(--panel);
      border: 1px solid var(--line);
      border-radius: 10px;
      display: flex;
      flex-direction: column;
      min-height: 0;
    }
    header { padding: 12px 16px; border-bottom: 1px solid var(--line); }
    header h1 { margin: 0; font-size: 20px; }
    header p { margin: 2px 0 0; color: var(--muted); font-size: 13px; }
    #messages, #terminal { flex: 1; overflow-y: auto; padding: 12px 16px; }
    .message { margin: 6px 0; padding: 8px 10px; border-radius: 8px; white-space: pre-wrap; }
    .message.user { background: #1f3a5f; }
    .message.assistant { background: #21262d; }
    #welcome { padding: 24px 16px; color: var(--muted); }
    #welcome h2 { margin: 0 0 4px; color: var(--ink); font-size: 18px; }
    #welcome li { cursor: pointer; margin: 4px 0; color: var(--accent); }
    form { display: flex; gap: 8px; padding: 12px 16px; border-top: 1px solid var(--line); }
    input { flex: 1; padding: 8px; border-radius: 6px; border: 1px solid var(--line); background: var(--bg); color: var(--ink); }
    button { padding: 8px 14px; border-radius: 6px; border: 0; background: var(--accent); color: #0d1117; }
    button:disabled, input:disabled { opacity: 0.5; }
    #terminal { font-family: ui-monospace, monospace; font-size: 12px; }
    .terminal-line span { margin-right: 6px; }
    .log-timestamp { color: var(--muted); }
    .log-navigate { color: #58a6ff; }
    .log-click { color: #d2a8ff; }
    .log-type { color: #79c0ff; }
    .log-highlight { color: #e3b341; }
    .log-snapshot { color: #a5d6ff; }
    .log-planning { color: #ffa657; }
    .log-init { color: #7ee787; }
    .log-user { color: #f0f6fc; }
    .log-error { color: #ff7b72; }
    .log-complete { color: #3fb950; }
    .log-shutdown { color: #8b949e; }
    .log-default { color: #c9d1d9; }
  </style>
</head>
<body>
  <section class="panel">
    <header>
      <h1>⚡ KORTEX</h1>
      <p>Autonomous Interface Layer</p>
    </header>
    <div id="welcome">
      <h2>Welcome to Kortex</h2>
      <p>Your AI-powered web automation agent.</p>
      <p>Try asking:</p>
      <ul>
        <li>Navigate to google.com</li>
        <li>Search for AI news</li>
        <li>Click the first result</li>
      </ul>
    </div>
    <div id="messages"></div>
    <form id="prompt-form">
      <input id="prompt" placeholder="Enter your command..." autocomplete="off">
      <button id="send" type="submit">→</button>
    </form>
  </section>
  <section class="panel">
    <header>
      <h1>⚙ MISSION CONTROL</h1>
      <p id="state">idle</p>
    </header>
    <div id="terminal"></div>
  </section>
  <script>
    const messagesEl = document.getElementById('messages');
    const welcomeEl = document.getElementById('welcome');
    const terminalEl = document.getElementById('terminal');
    const stateEl = document.getElementById('state');
    const promptEl = document.getElementById('prompt');
    const sendEl = document.getElementById('send');

    function renderMessages(messages) {
      messagesEl.innerHTML = '';
      welcomeEl.hidden = messages.length > 0;
      for (const msg of messages) {
        const div = document.createElement('div');
        div.className = 'message ' + msg.role;
        div.textContent = msg.content;
        messagesEl.appendChild(div);
      }
    }

    function renderTimeline(entries) {
      terminalEl.innerHTML = '';
      if (!entries.length) {
        terminalEl.textContent = 'Awaiting agent activity...';
        return;
      }
      for (const entry of entries) {
        const line = document.createElement('div');
        line.className = 'terminal-line ' + entry.category;
        for (const [cls, text] of [['log-timestamp', '[' + entry.time + ']'], ['log-level', '[' + entry.level + ']'], ['log-message', entry.message]]) {
          const span = document.createElement('span');
          span.className = cls;
          span.textContent = text;
          line.appendChild(span);
        }
        terminalEl.appendChild(line);
      }
      terminalEl.scrollTop = terminalEl.scrollHeight;
    }

    async function refresh() {
      const [status, timeline, transcript] = await Promise.all([
        fetch('/api/status').then(r => r.json()),
        fetch('/api/timeline?limit=500').then(r => r.json()),
        fetch('/api/transcript').then(r => r.json()),
      ]);
      stateEl.textContent = status.state + ' · agent ' + status.agent;
      promptEl.disabled = status.processing;
      sendEl.disabled = status.processing;
      if (!status.processing && status.input_buffer === '' && document.activeElement !== promptEl) {
        promptEl.value = '';
      }
      renderMessages(transcript.messages);
      renderTimeline(timeline.entries);
    }

    for (const item of welcomeEl.querySelectorAll('li')) {
      item.addEventListener('click', () => {
        promptEl.value = item.textContent;
        promptEl.focus();
      });
    }

    document.getElementById('prompt-form').addEventListener('submit', async (event) => {
      event.preventDefault();
      const message = promptEl.value;
      if (!message.trim()) return;
      await fetch('/api/input', {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify({text: message})});
      await fetch('/api/prompt', {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify({message})});
      refresh();
    });

    refresh();
    setInterval(refresh, 1000);
  </script>
</body>
</html>
"""
    return HTMLResponse(content=html)
