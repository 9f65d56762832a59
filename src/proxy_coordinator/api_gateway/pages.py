"""Static HTML served at GET /."""

INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>Proxy Coordinator API</title>
    <style>
        body {
            background-color: #0d0d0d;
            color: #00ffcc;
            font-family: monospace;
            padding: 40px;
        }
        h1 {
            color: #ff00ff;
        }
        li {
            margin-bottom: 10px;
        }
        code {
            background: #1a1a1a;
            padding: 2px 6px;
            border-radius: 4px;
        }
    </style>
</head>
<body>
    <h1>Proxy Coordinator API</h1>
    <p>Available endpoints:</p>
    <ul>
        <li><code>GET /</code> - This page</li>
        <li><code>GET /health</code> - Health check</li>
        <li><code>GET /status</code> - Registry counters</li>
        <li><code>POST /register</code> - Register proxy node (id, password, mac_id, api_key)</li>
        <li><code>POST /login</code> - Exchange username/password for a bearer token</li>
        <li><code>POST /nodes/token</code> - Exchange node id/password for a node token</li>
        <li><code>GET /ws/</code> - WebSocket for proxy nodes (send an Auth message first)</li>
        <li><code>GET /nodes</code> - List active proxy nodes</li>
        <li><code>GET /registered</code> - List registered nodes (if enabled)</li>
    </ul>
</body>
</html>
"""
