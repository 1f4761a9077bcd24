from __future__ import annotations

from html import escape
from typing import Dict, List, Optional

from .storage import ChatMessage


def render_index(
    *,
    providers: List[Dict[str, str]],
    history: List[ChatMessage],
    active_provider: Optional[str] = None,
) -> str:
    active = active_provider or (providers[0]["model"] if providers else "")
    options_html = render_provider_options(providers, active)
    messages_html = render_messages(history)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Chat Relay</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 0; display: flex; flex-direction: column; height: 100vh; }}
header, footer {{ padding: 0.75rem 1rem; background: #f3f4f6; display: flex; gap: 0.5rem; align-items: center; }}
main {{ flex: 1; overflow-y: auto; padding: 1rem; }}
.message {{ margin: 0 0 0.75rem; padding: 0.5rem 0.75rem; border-radius: 6px; white-space: pre-wrap; }}
.message.user {{ background: #dbeafe; }}
.message.assistant {{ background: #f3f4f6; }}
.meta {{ font-size: 0.75rem; color: #6b7280; }}
.empty {{ color: #6b7280; }}
#provider-form input {{ width: 12rem; }}
#prompt {{ flex: 1; }}
</style>
</head>
<body>
<header>
  <h1 style="font-size:1rem;margin:0 1rem 0 0">Chat Relay</h1>
  <select id="provider">{options_html}</select>
  <form id="provider-form">
    <input name="url" placeholder="API URL">
    <input name="model" placeholder="Model">
    <input name="token" placeholder="Token or env:NAME" type="password">
    <button type="submit">Save provider</button>
    <span id="provider-status"></span>
  </form>
</header>
<main id="messages">{messages_html}</main>
<footer>
  <textarea id="prompt" rows="2" placeholder="Message"></textarea>
  <button id="send">Send</button>
  <button id="export-history" type="button">Export</button>
  <label>Import <input id="import-history" type="file" accept="application/json"></label>
  <button id="clear-history" type="button">Clear</button>
</footer>
{_page_script()}
</body>
</html>
"""


def render_provider_options(providers: List[Dict[str, str]], active: str) -> str:
    if not providers:
        return "<option value=\"\">No providers</option>"
    parts = []
    for provider in providers:
        model = escape(provider["model"])
        selected = " selected" if provider["model"] == active else ""
        parts.append(f"<option value=\"{model}\"{selected}>{model}</option>")
    return "".join(parts)


def render_messages(history: List[ChatMessage]) -> str:
    if not history:
        return "<p class=\"empty\">No messages yet.</p>"
    return "\n".join(_render_message(message) for message in history)


def _render_message(message: ChatMessage) -> str:
    author = "You" if message.role == "user" else message.provider
    return (
        f"<div class=\"message {escape(message.role)}\">"
        f"<div class=\"meta\">{escape(author or '')} · {escape(message.timestamp)}</div>"
        f"{escape(message.content)}"
        "</div>"
    )


def _page_script() -> str:
    # Mirrors _render_message so appended bubbles match the server-rendered ones.
    return """<script>
const messagesEl = document.getElementById('messages');
const providerEl = document.getElementById('provider');
const promptEl = document.getElementById('prompt');

function bubble(message) {
  const div = document.createElement('div');
  div.className = 'message ' + message.role;
  const meta = document.createElement('div');
  meta.className = 'meta';
  meta.textContent = (message.role === 'user' ? 'You' : message.provider) + ' · ' + message.timestamp;
  div.appendChild(meta);
  div.appendChild(document.createTextNode(message.content));
  const empty = messagesEl.querySelector('.empty');
  if (empty) empty.remove();
  messagesEl.appendChild(div);
  messagesEl.scrollTop = messagesEl.scrollHeight;
}

async function postJson(path, body) {
  const response = await fetch(path, {
    method: 'POST',
    headers: {'Content-Type': 'application/json'},
    body: JSON.stringify(body),
  });
  return response.json();
}

async function send() {
  const text = promptEl.value.trim();
  const provider = providerEl.value;
  if (!text || !provider) return;
  promptEl.value = '';
  const userMessage = {
    id: crypto.randomUUID(),
    timestamp: new Date().toISOString(),
    role: 'user',
    content: text,
    provider: provider,
  };
  bubble(userMessage);
  await postJson('/api/message', {message: userMessage});
  const reply = await postJson('/api/chat', {provider: provider, message: text});
  bubble(reply);
  await postJson('/api/message', {message: reply});
}

function showEmpty() {
  messagesEl.innerHTML = '<p class="empty">No messages yet.</p>';
}

document.getElementById('export-history').addEventListener('click', async () => {
  const payload = await (await fetch('/api/history/export')).json();
  const blob = new Blob([JSON.stringify(payload, null, 2)], {type: 'application/json'});
  const url = URL.createObjectURL(blob);
  const anchor = document.createElement('a');
  anchor.href = url;
  anchor.download = 'chat-history.json';
  anchor.click();
  URL.revokeObjectURL(url);
});

document.getElementById('import-history').addEventListener('change', async (event) => {
  const file = event.target.files[0];
  if (!file) return;
  let entries;
  try {
    entries = JSON.parse(await file.text());
  } catch (error) {
    alert('Invalid history file.');
    return;
  }
  if (!Array.isArray(entries)) {
    alert('Invalid history file.');
    return;
  }
  await postJson('/api/history', entries);
  const history = await (await fetch('/api/history')).json();
  showEmpty();
  history.forEach(bubble);
  event.target.value = '';
});

document.getElementById('clear-history').addEventListener('click', async () => {
  await postJson('/api/history', []);
  showEmpty();
});

document.getElementById('send').addEventListener('click', send);
promptEl.addEventListener('keydown', (event) => {
  if (event.key === 'Enter' && !event.shiftKey) {
    event.preventDefault();
    send();
  }
});

document.getElementById('provider-form').addEventListener('submit', async (event) => {
  event.preventDefault();
  const form = event.target;
  const data = await postJson('/api/providers', {
    model: form.model.value.trim(),
    url: form.url.value.trim(),
    token: form.token.value.trim(),
  });
  const status = document.getElementById('provider-status');
  if (data.status === 'ok') {
    form.reset();
    status.textContent = 'Model ' + data.provider.model + ' saved.';
    const providers = await (await fetch('/api/providers')).json();
    providerEl.innerHTML = '';
    for (const item of providers) {
      const option = document.createElement('option');
      option.value = item.model;
      option.textContent = item.model;
      providerEl.appendChild(option);
    }
    providerEl.value = data.provider.model;
  } else {
    status.textContent = data.message || 'Unable to save provider.';
  }
});
</script>"""
