"""
API Gateway — HTTP/WebSocket interface of the proxy coordinator.

Endpoints:
- GET  /            — HTML help page
- GET  /health      — liveness probe
- GET  /status      — registry counters
- POST /register    — store node credentials
- POST /login       — username/password -> bearer token
- POST /nodes/token — node id/password -> node token
- GET  /hello       — token check
- GET  /nodes       — active nodes
- GET  /registered  — registered nodes (only if expose_registered)
- WS   /ws/         — node session (Auth, SetAddress)
"""

import hmac
import logging
import threading
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import HTMLResponse, PlainTextResponse
from pydantic import BaseModel

from ..auth import TokenClaims, TokenKind, TokenService, UserStore
from ..config import CoordinatorConfig
from ..errors import AlreadyRegisteredError, InvalidCredentialsError, InvalidTokenError
from ..registry import (
    ActiveRegistry,
    ProxyNode,
    RegisteredNode,
    RegisteredNodeView,
    RegisterRequest,
    RegisterResponse,
    RegistrationStore,
)
from ..session import NodeSession, SessionReply
from .pages import INDEX_HTML

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class LoginRequest(BaseModel):
    username: str
    password: str


class NodeTokenRequest(BaseModel):
    id: UUID
    password: str


class TokenResponse(BaseModel):
    token: str


class StatusResponse(BaseModel):
    status: str
    active_nodes: int
    registered_nodes: int
    open_sessions: int


# =============================================================================
# Gateway
# =============================================================================

class CoordinatorGateway:
    """
    Owns the registries and the token subsystem for one process.

    Built once at startup and shared by every route and session.
    """

    def __init__(self, config: Optional[CoordinatorConfig] = None):
        self.config = config or CoordinatorConfig.load()

        self.registered = RegistrationStore()
        self.active = ActiveRegistry()

        self.users = UserStore()
        self.tokens = TokenService(self.config.token_secret, self.config.token_ttl_hours)

        self._sessions: Dict[str, NodeSession] = {}
        self._sessions_lock = threading.Lock()

        if self.config.admin_username and self.config.admin_password:
            self.users.add_user(self.config.admin_username, self.config.admin_password)

        logger.info(
            f"CoordinatorGateway initialized: require_token={self.config.require_token}, "
            f"expose_registered={self.config.expose_registered}, "
            f"api_key={'set' if self.config.api_key else 'unset'}"
        )

    # =========================================================================
    # Registration
    # =========================================================================

    def _check_api_key(self, api_key: Optional[str]) -> bool:
        expected = self.config.api_key
        if not expected:
            return True
        return hmac.compare_digest((api_key or "").encode("utf-8"), expected.encode("utf-8"))

    def register_node(self, request: RegisterRequest) -> RegisterResponse:
        if not self._check_api_key(request.api_key):
            logger.warning(f"Registration for {request.id} rejected: invalid API key")
            raise HTTPException(status_code=401, detail="Invalid API key")

        node = RegisteredNode(id=request.id, password=request.password, mac_id=request.mac_id)
        try:
            self.registered.register(node)
        except AlreadyRegisteredError:
            logger.warning(f"Registration for {request.id} rejected: already registered")
            raise HTTPException(status_code=409, detail="ID already registered")

        return RegisterResponse(id=node.id)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_active_nodes(self) -> List[ProxyNode]:
        return self.active.list_nodes()

    def list_registered_nodes(self) -> List[RegisteredNodeView]:
        return [RegisteredNodeView.from_node(n) for n in self.registered.list_nodes()]

    def get_status(self) -> StatusResponse:
        with self._sessions_lock:
            open_sessions = len(self._sessions)
        return StatusResponse(
            status="healthy",
            active_nodes=len(self.active),
            registered_nodes=len(self.registered),
            open_sessions=open_sessions,
        )

    # =========================================================================
    # Tokens
    # =========================================================================

    def login(self, request: LoginRequest) -> TokenResponse:
        """
        Raises:
            InvalidCredentialsError: Unknown user or wrong password.
        """
        if not self.users.verify(request.username, request.password):
            logger.warning(f"Login failed for user {request.username}")
            raise InvalidCredentialsError("Invalid username or password")
        logger.info(f"Token issued for user {request.username}")
        return TokenResponse(token=self.tokens.issue(request.username, TokenKind.USER))

    def issue_node_token(self, request: NodeTokenRequest) -> TokenResponse:
        """
        Raises:
            InvalidCredentialsError: Unknown node or wrong password.
        """
        if self.registered.verify(request.id, request.password) is None:
            logger.warning(f"Node token refused for {request.id}")
            raise InvalidCredentialsError("Invalid node id or password")
        logger.info(f"Token issued for node {request.id}")
        return TokenResponse(token=self.tokens.issue(str(request.id), TokenKind.NODE))

    def authorize(self, token: str) -> TokenClaims:
        """
        Raises:
            InvalidTokenError: Token rejected by the token service.
        """
        return self.tokens.validate(token)

    # =========================================================================
    # Sessions
    # =========================================================================

    def open_session(self, peer: Optional[str] = None) -> NodeSession:
        session = NodeSession(
            self.registered,
            self.active,
            close_on_malformed_first_message=self.config.close_on_malformed_first_message,
            peer=peer,
        )
        with self._sessions_lock:
            self._sessions[session.session_id] = session
        return session

    def release_session(self, session: NodeSession) -> None:
        session.close()
        with self._sessions_lock:
            self._sessions.pop(session.session_id, None)


# =============================================================================
# Bearer token helpers
# =============================================================================

def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` value."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def _websocket_token(websocket: WebSocket) -> Optional[str]:
    token = parse_bearer(websocket.headers.get("authorization"))
    if token is None:
        token = websocket.query_params.get("token")
    return token


async def _send_reply(websocket: WebSocket, reply: SessionReply) -> bool:
    """Send the notice, if any; return True if the connection was closed."""
    if reply.notice:
        await websocket.send_text(reply.notice)
    if reply.close:
        await websocket.close()
        return True
    return False


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(gateway: Optional[CoordinatorGateway] = None) -> FastAPI:
    """Create FastAPI application."""

    if gateway is None:
        gateway = CoordinatorGateway()

    app = FastAPI(
        title="Proxy Coordinator API",
        description="Registration and live registry of proxy nodes",
        version="1.0.0",
    )

    app.state.gateway = gateway

    # ==========================================================================
    # Dependencies
    # ==========================================================================

    def bearer_claims(request: Request) -> TokenClaims:
        """Always require a valid bearer token."""
        token = parse_bearer(request.headers.get("Authorization"))
        if token is None:
            raise HTTPException(
                status_code=401,
                detail="Bearer token required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        try:
            return gateway.authorize(token)
        except InvalidTokenError as e:
            logger.warning(f"Rejected bearer token: {e}")
            raise HTTPException(
                status_code=401,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    def gated(request: Request) -> Optional[TokenClaims]:
        """Require a bearer token only when the deployment enables the gate."""
        if not gateway.config.require_token:
            return None
        return bearer_claims(request)

    # ==========================================================================
    # Routes
    # ==========================================================================

    @app.get("/", response_class=HTMLResponse)
    async def index():
        """API help page."""
        return INDEX_HTML

    @app.get("/health", response_class=PlainTextResponse)
    async def health():
        return "OK"

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        return gateway.get_status()

    @app.post("/register", response_model=RegisterResponse)
    def register(request: RegisterRequest):
        """Register a proxy node."""
        return gateway.register_node(request)

    @app.post("/login", response_model=TokenResponse)
    def login(request: LoginRequest):
        try:
            return gateway.login(request)
        except InvalidCredentialsError:
            raise HTTPException(status_code=401, detail="Invalid username or password")

    @app.post("/nodes/token", response_model=TokenResponse)
    def node_token(request: NodeTokenRequest):
        try:
            return gateway.issue_node_token(request)
        except InvalidCredentialsError:
            raise HTTPException(status_code=401, detail="Invalid node id or password")

    @app.get("/hello", response_class=PlainTextResponse)
    async def hello(claims: TokenClaims = Depends(bearer_claims)):
        return "Hello! You are authenticated."

    @app.get("/nodes", response_model=List[ProxyNode])
    async def list_nodes(claims: Optional[TokenClaims] = Depends(gated)):
        """List active proxy nodes."""
        return gateway.list_active_nodes()

    if gateway.config.expose_registered:
        @app.get("/registered", response_model=List[RegisteredNodeView])
        async def list_registered(claims: Optional[TokenClaims] = Depends(gated)):
            """List registered proxy nodes (credentials omitted)."""
            return gateway.list_registered_nodes()

    @app.websocket("/ws/")
    async def node_socket(websocket: WebSocket):
        """Live session of one proxy node."""
        claims: Optional[TokenClaims] = None
        token = _websocket_token(websocket)
        if token is not None:
            try:
                claims = gateway.authorize(token)
            except InvalidTokenError as e:
                logger.warning(f"WebSocket rejected: {e}")
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                return
        elif gateway.config.require_token:
            logger.warning("WebSocket rejected: bearer token required")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else None
        session = gateway.open_session(peer)

        try:
            reply = session.start(claims.node_id if claims else None)
            if await _send_reply(websocket, reply):
                return

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    # Binary frames carry nothing we understand
                    continue
                reply = session.handle_text(text)
                if await _send_reply(websocket, reply):
                    break

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Session {session.session_id[:8]} (node={session.node_id}) failed: {e}")
            raise
        finally:
            gateway.release_session(session)

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Run the coordinator with uvicorn."""
    import uvicorn

    config = CoordinatorConfig.load()
    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    logger.info(f"Listening on: {config.bind_address}")
    app = create_app(CoordinatorGateway(config))
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
