"""
Preview Page - HTML served for browser-preview sandboxes

The page frames the previewed URL and connects back to the host over a
WebSocket. Commands arrive as {kind, correlation_key, params}; every
command that carries a correlation key is answered with
{correlation_key, result} or {correlation_key, error}.
"""

import html
import json
from string import Template

PREVIEW_TEMPLATE = Template("""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Preview $title</title>
  <script src="https://cdn.jsdelivr.net/npm/html2canvas@1.4.1/dist/html2canvas.min.js"></script>
  <style>
    html, body { margin: 0; height: 100%; }
    #status { font: 12px sans-serif; padding: 4px 8px; background: #f3f3f3; border-bottom: 1px solid #ddd; }
    #frame { width: 100%; height: calc(100% - 25px); border: 0; }
  </style>
</head>
<body>
  <div id="status">Connecting...</div>
  <iframe id="frame" src="$frame_src"></iframe>
  <script>
    const previewId = $preview_id;
    const frame = document.getElementById("frame");
    const status = document.getElementById("status");
    const scheme = location.protocol === "https:" ? "wss" : "ws";
    const socket = new WebSocket(scheme + "://" + location.host + "/ws/preview/" + encodeURIComponent(previewId));

    function reply(key, result, error) {
      if (!key) { return; }
      const message = { correlation_key: key };
      if (error !== undefined) { message.error = String(error); } else { message.result = result; }
      socket.send(JSON.stringify(message));
    }

    function frameDocument() {
      const doc = frame.contentDocument;
      if (!doc) { throw new Error("Preview content is not accessible"); }
      return doc;
    }

    const handlers = {
      refresh: async () => { frame.contentWindow.location.reload(); return true; },
      takeScreenshot: async () => {
        const canvas = await html2canvas(frameDocument().body);
        return canvas.toDataURL("image/png");
      },
      inspectElement: async (params) => {
        const element = frameDocument().querySelector(params.selector);
        if (!element) { throw new Error("No element matches " + params.selector); }
        const rect = element.getBoundingClientRect();
        const attributes = {};
        for (const attr of element.attributes) { attributes[attr.name] = attr.value; }
        return {
          tagName: element.tagName.toLowerCase(),
          id: element.id,
          className: element.className,
          textContent: (element.textContent || "").trim().slice(0, 1000),
          attributes: attributes,
          boundingRect: { x: rect.x, y: rect.y, width: rect.width, height: rect.height }
        };
      },
      executeScript: async (params) => {
        const value = await frame.contentWindow.eval(params.script);
        try { return JSON.parse(JSON.stringify(value)); } catch (e) { return String(value); }
      }
    };

    socket.onopen = () => { status.textContent = "Connected: " + previewId; };
    socket.onclose = () => { status.textContent = "Disconnected"; };
    socket.onmessage = async (event) => {
      const command = JSON.parse(event.data);
      const handler = handlers[command.kind];
      if (!handler) {
        reply(command.correlation_key, undefined, "Unknown command: " + command.kind);
        return;
      }
      try {
        reply(command.correlation_key, await handler(command.params || {}));
      } catch (e) {
        reply(command.correlation_key, undefined, e && e.message ? e.message : e);
      }
    };
  </script>
</body>
</html>
""")


def render_preview_page(preview_id: str, url: str) -> str:
    """Render the preview page for one preview id"""
    return PREVIEW_TEMPLATE.substitute(
        title=html.escape(preview_id),
        frame_src=html.escape(url, quote=True),
        preview_id=json.dumps(preview_id).replace("<", "\\u003c")
    )
