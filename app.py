import io
import json
import os
import secrets
import time
import uuid

from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_file, session

from editor_state import EditInProgress, EditorSession, MissingInputs, NoResult, SessionStore, UploadedImage
from gemini_service import IMAGE_MODELS, ImageEditError, create_client, edit_image_with_gemini
from image_intake import IntakeError, file_to_data_url

load_dotenv()

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY") or secrets.token_hex(32)
app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("MAX_UPLOAD_MB", "20")) * 1024 * 1024

client = create_client()

editors = SessionStore()

EDIT_FAILED_MESSAGE = "Failed to edit image. Please try again."


def current_editor(create=True):
    """The editor for this browser, or None when it has none and create is False."""
    editor_id = session.get("editor_id")
    if not editor_id:
        if not create:
            return None
        editor_id = session["editor_id"] = uuid.uuid4().hex
    return editors.get(editor_id, create=create)


@app.errorhandler(413)
def upload_too_large(_e):
    limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
    return jsonify({"error": f"Image is too large (limit {limit_mb} MB)."}), 413


@app.route("/")
def index():
    return HTML_PAGE.replace("/*__IMAGE_MODELS__*/", json.dumps(IMAGE_MODELS))


@app.route("/api/state")
def state():
    editor = current_editor(create=False) or EditorSession()
    return jsonify(editor.snapshot())


@app.route("/api/image", methods=["POST"])
def upload_image():
    file = request.files.get("file")
    if file is None:
        return jsonify({"error": "No image provided"}), 400

    try:
        data_url = file_to_data_url(file)
    except IntakeError as e:
        return jsonify({"error": str(e)}), 400

    editor = current_editor()
    try:
        editor.load_image(UploadedImage(file.filename or "", file.mimetype, data_url))
    except EditInProgress as e:
        return jsonify({"error": str(e)}), 409

    return jsonify(editor.snapshot())


@app.route("/api/image", methods=["DELETE"])
def remove_image():
    editor = current_editor()
    try:
        editor.remove_image()
    except EditInProgress as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(editor.snapshot())


@app.route("/api/edit", methods=["POST"])
def edit():
    data = request.get_json(silent=True) or {}
    prompt = data.get("prompt") or ""
    model = data.get("model") or IMAGE_MODELS[0]

    if model not in IMAGE_MODELS:
        return jsonify({"error": f"Unknown model: {model}"}), 400

    editor = current_editor()
    try:
        edit_request = editor.begin_edit(prompt)
    except MissingInputs as e:
        return jsonify({"error": str(e)}), 400
    except EditInProgress as e:
        return jsonify({"error": str(e)}), 409

    try:
        start = time.time()
        edited_b64 = edit_image_with_gemini(
            client,
            edit_request.image_base64,
            edit_request.mime_type,
            edit_request.prompt,
            model=model,
        )
        elapsed = round(time.time() - start, 1)
        editor.finish_edit(edited_b64)
    except ImageEditError as e:
        app.logger.warning("Image edit failed: %s", e)
        return edit_failed(editor)
    except Exception:
        app.logger.exception("Unexpected error while editing image")
        return edit_failed(editor)
    finally:
        editors.release(session.get("editor_id"), editor)

    app.logger.info("Edited %s with %s in %ss", edit_request.mime_type, model, elapsed)
    return jsonify({"elapsed": elapsed, **editor.snapshot()})


def edit_failed(editor):
    editor.fail_edit(EDIT_FAILED_MESSAGE)
    return jsonify({"error": EDIT_FAILED_MESSAGE, **editor.snapshot()}), 502


@app.route("/api/download")
def download():
    try:
        editor = current_editor(create=False)
        if editor is None:
            raise NoResult()
        image_bytes, mime_type, download_name = editor.download()
    except NoResult as e:
        return jsonify({"error": str(e)}), 404

    return send_file(
        io.BytesIO(image_bytes),
        mimetype=mime_type,
        as_attachment=True,
        download_name=download_name,
    )


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Gemini Image Editor</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #0f0f0f;
    color: #e0e0e0;
    min-height: 100vh;
  }

  header {
    text-align: center;
    padding: 32px 24px 8px;
  }
  header h1 {
    font-size: 2rem;
    font-weight: 700;
    background: linear-gradient(90deg, #a78bfa, #22d3ee);
    -webkit-background-clip: text;
    background-clip: text;
    color: transparent;
  }
  header p { color: #888; margin-top: 8px; font-size: 0.9rem; }

  .split-layout {
    display: flex;
    gap: 24px;
    padding: 24px;
    max-width: 1280px;
    margin: 0 auto;
  }

  .panel {
    flex: 1;
    display: flex;
    flex-direction: column;
    gap: 16px;
    background: #141414;
    border: 1px solid #1e1e1e;
    border-radius: 14px;
    padding: 20px 24px;
    position: relative;
    min-height: 420px;
  }

  .panel-header {
    display: flex;
    align-items: center;
    gap: 10px;
  }
  .panel-header h2 { font-size: 0.95rem; font-weight: 600; color: #fff; }

  .badge {
    font-size: 0.65rem;
    padding: 2px 8px;
    border-radius: 4px;
    font-weight: 500;
    text-transform: uppercase;
    letter-spacing: 0.5px;
  }
  .badge-input { background: #1e3a2f; color: #4ade80; }
  .badge-result { background: #2e1e3a; color: #a78bfa; }

  .dropzone {
    position: relative;
    aspect-ratio: 1 / 1;
    border: 2px dashed #2a2a2a;
    border-radius: 12px;
    display: flex;
    flex-direction: column;
    justify-content: center;
    align-items: center;
    text-align: center;
    color: #888;
    transition: border-color 0.2s;
  }
  .dropzone:hover { border-color: #8b5cf6; }
  .dropzone h3 { color: #ccc; font-size: 0.95rem; margin-bottom: 6px; }
  .dropzone p { font-size: 0.8rem; }
  .dropzone input {
    position: absolute;
    inset: 0;
    opacity: 0;
    cursor: pointer;
  }

  .preview { position: relative; display: none; }
  .preview.visible { display: block; }
  .preview img, .result img { width: 100%; border-radius: 10px; display: block; }

  .remove-btn {
    position: absolute;
    top: 10px;
    right: 10px;
    background: rgba(0,0,0,0.6);
    padding: 4px 12px;
    font-size: 0.72rem;
  }

  select {
    background: #1a1a1a;
    color: #e0e0e0;
    border: 1px solid #2a2a2a;
    border-radius: 8px;
    padding: 8px 12px;
    font-size: 0.82rem;
    outline: none;
  }
  select:hover, select:focus { border-color: #8b5cf6; }

  textarea {
    width: 100%;
    min-height: 110px;
    background: #1a1a1a;
    color: #e0e0e0;
    border: 1px solid #2a2a2a;
    border-radius: 10px;
    padding: 14px;
    font-size: 0.9rem;
    font-family: inherit;
    resize: vertical;
    outline: none;
    line-height: 1.5;
  }
  textarea:focus { border-color: #8b5cf6; }
  textarea::placeholder { color: #555; }

  button, .download-btn {
    background: #8b5cf6;
    color: #fff;
    border: none;
    border-radius: 8px;
    padding: 10px 20px;
    font-size: 0.85rem;
    font-weight: 500;
    cursor: pointer;
    transition: background 0.2s, opacity 0.2s;
    text-align: center;
    text-decoration: none;
  }
  button:hover { background: #7c3aed; }
  button:disabled { opacity: 0.5; cursor: not-allowed; }
  .download-btn { display: block; background: #0891b2; margin-top: 12px; }
  .download-btn:hover { background: #06b6d4; }

  .error-msg { color: #fca5a5; font-size: 0.82rem; min-height: 1.2em; }
  .status { font-size: 0.78rem; color: #888; min-height: 1.2em; }
  .status .timer { color: #8b5cf6; font-variant-numeric: tabular-nums; }

  .placeholder {
    flex: 1;
    display: flex;
    flex-direction: column;
    justify-content: center;
    align-items: center;
    color: #666;
    text-align: center;
  }
  .placeholder h3 { color: #aaa; font-size: 0.95rem; margin-bottom: 6px; }
  .result { display: none; }
  .result.visible { display: block; }

  .overlay {
    position: absolute;
    inset: 0;
    background: rgba(15,15,15,0.7);
    border-radius: 14px;
    display: none;
    flex-direction: column;
    justify-content: center;
    align-items: center;
    gap: 14px;
    z-index: 10;
  }
  .overlay.visible { display: flex; }
  .spinner {
    width: 36px; height: 36px;
    border: 3px solid #333;
    border-top-color: #8b5cf6;
    border-radius: 50%;
    animation: spin 0.8s linear infinite;
  }
  @keyframes spin { to { transform: rotate(360deg); } }

  @media (max-width: 900px) { .split-layout { flex-direction: column; } }
</style>
</head>
<body>

<header>
  <h1>Gemini Image Editor</h1>
  <p>Use text prompts to edit your images with Gemini.</p>
</header>

<div class="split-layout">

  <!-- ── LEFT: Image + prompt ── -->
  <div class="panel">
    <div class="panel-header">
      <h2>1. Your Image</h2>
      <span class="badge badge-input">Upload</span>
    </div>

    <div id="dropzone" class="dropzone">
      <h3>Upload an Image</h3>
      <p>Drag and drop or click to select a file</p>
      <input id="fileInput" type="file" accept="image/*">
    </div>
    <div id="preview" class="preview">
      <img id="previewImg" alt="Original">
      <button id="removeBtn" class="remove-btn" onclick="removeImage()">&#10005; Remove</button>
    </div>

    <div class="panel-header">
      <h2>2. Describe Your Edit</h2>
      <select id="model" style="margin-left:auto"></select>
    </div>
    <textarea id="prompt" placeholder='e.g., "Add a retro filter" or "Remove the person in the background"'></textarea>
    <div id="error" class="error-msg"></div>
    <button id="generateBtn" onclick="generate()" disabled>Generate</button>
    <div id="status" class="status"></div>
  </div>

  <!-- ── RIGHT: Result ── -->
  <div class="panel">
    <div class="panel-header">
      <h2>Result</h2>
      <span class="badge badge-result">Image</span>
    </div>
    <div id="placeholder" class="placeholder">
      <h3>Edited Image Appears Here</h3>
      <p>Your AI-powered creation will be displayed once generated.</p>
    </div>
    <div id="result" class="result">
      <img id="resultImg" alt="Edited">
      <a id="downloadLink" class="download-btn" href="/api/download">Download Image</a>
    </div>
    <div id="overlay" class="overlay">
      <div class="spinner"></div>
      <p>AI is working its magic...</p>
    </div>
  </div>
</div>

<script>
  const IMAGE_MODELS = /*__IMAGE_MODELS__*/;
  const INVALID_TYPE_MESSAGE = 'Please upload a valid image file (PNG, JPG, etc.).';
  const MISSING_INPUTS_MESSAGE = 'Please upload an image and enter a prompt.';

  const fileInput = document.getElementById('fileInput');
  const dropzoneEl = document.getElementById('dropzone');
  const previewEl = document.getElementById('preview');
  const previewImg = document.getElementById('previewImg');
  const promptEl = document.getElementById('prompt');
  const modelEl = document.getElementById('model');
  const errorEl = document.getElementById('error');
  const statusEl = document.getElementById('status');
  const generateBtn = document.getElementById('generateBtn');
  const placeholderEl = document.getElementById('placeholder');
  const resultEl = document.getElementById('result');
  const resultImg = document.getElementById('resultImg');
  const downloadLink = document.getElementById('downloadLink');
  const overlayEl = document.getElementById('overlay');

  IMAGE_MODELS.forEach(m => {
    const opt = document.createElement('option');
    opt.value = m;
    opt.textContent = m;
    modelEl.appendChild(opt);
  });

  let view = { status: 'idle', image: null, result: null, download_name: null, error: null };

  // ── Timer helper ──
  function createTimer(el) {
    let interval = null;
    return {
      start() {
        const t0 = Date.now();
        clearInterval(interval);
        interval = setInterval(() => {
          const s = ((Date.now() - t0) / 1000).toFixed(1);
          el.innerHTML = '<span class="timer">' + s + 's</span> waiting for response...';
        }, 100);
      },
      stop() { clearInterval(interval); interval = null; }
    };
  }
  const timer = createTimer(statusEl);

  // ── API call helper ──
  async function callApi(url, options) {
    const res = await fetch(url, options);
    const data = await res.json();
    if (!res.ok) {
      const err = new Error(data.error || 'HTTP ' + res.status);
      err.state = data.status ? data : null;
      throw err;
    }
    return data;
  }

  function render() {
    const loading = view.status === 'requesting';
    const hasImage = !!view.image;

    dropzoneEl.style.display = hasImage ? 'none' : 'flex';
    previewEl.className = hasImage ? 'preview visible' : 'preview';
    if (hasImage) previewImg.src = view.image;

    promptEl.disabled = loading || !hasImage;
    fileInput.disabled = loading;
    generateBtn.disabled = loading || !hasImage || !promptEl.value.trim();
    generateBtn.textContent = loading ? 'Generating...' : 'Generate';

    overlayEl.className = loading ? 'overlay visible' : 'overlay';
    if (view.result) {
      resultImg.src = view.result;
      downloadLink.setAttribute('download', view.download_name);
      resultEl.className = 'result visible';
      placeholderEl.style.display = 'none';
    } else {
      resultEl.className = 'result';
      placeholderEl.style.display = loading ? 'none' : 'flex';
    }
  }

  function showError(msg) { errorEl.textContent = msg || ''; }

  fileInput.addEventListener('change', async () => {
    const file = fileInput.files[0];
    if (!file) return;
    if (!file.type.startsWith('image/')) {
      showError(INVALID_TYPE_MESSAGE);
      fileInput.value = '';
      return;
    }
    const form = new FormData();
    form.append('file', file);
    try {
      view = await callApi('/api/image', { method: 'POST', body: form });
      showError('');
    } catch (err) {
      showError(err.message);
    }
    fileInput.value = '';
    render();
  });

  async function removeImage() {
    try {
      view = await callApi('/api/image', { method: 'DELETE' });
      showError('');
      statusEl.textContent = '';
    } catch (err) {
      showError(err.message);
    }
    render();
  }

  promptEl.addEventListener('input', render);
  promptEl.addEventListener('keydown', e => {
    if (e.key === 'Enter' && (e.metaKey || e.ctrlKey)) { e.preventDefault(); generate(); }
  });

  async function generate() {
    const prompt = promptEl.value.trim();
    if (!view.image || !prompt) {
      showError(MISSING_INPUTS_MESSAGE);
      return;
    }
    if (view.status === 'requesting') return;

    showError('');
    view = Object.assign({}, view, { status: 'requesting', result: null });
    render();
    timer.start();

    try {
      const data = await callApi('/api/edit', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ prompt, model: modelEl.value }),
      });
      timer.stop();
      view = data;
      statusEl.innerHTML = 'Done in <span class="timer">' + data.elapsed + 's</span>';
    } catch (err) {
      timer.stop();
      statusEl.textContent = '';
      showError(err.message);
      view = err.state || Object.assign({}, view, { status: 'failed' });
    }
    render();
  }

  callApi('/api/state').then(data => { view = data; render(); }).catch(() => render());
</script>
</body>
</html>
"""

if __name__ == "__main__":
    app.run(debug=True, port=5001, threaded=True)
