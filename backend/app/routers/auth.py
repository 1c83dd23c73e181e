import os
from datetime import timedelta

import jwt
from fastapi import Depends, Header, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Player
from ..exceptions import ProblemDetail, http_problem
from ..time_utils import utcnow


def get_jwt_secret() -> str:
  """HS256 signing key; at least 32 characters."""

  secret = (os.getenv("JWT_SECRET") or "").strip()
  if len(secret) < 32:
    raise RuntimeError("JWT_SECRET must be set to a value of at least 32 characters")
  return secret


JWT_ALG = "HS256"
JWT_EXPIRE_SECONDS = 3600


def rate_limits_disabled() -> bool:
  return (os.getenv("DISABLE_RATE_LIMITS") or "").lower() == "true"


def _get_client_ip(request: Request) -> str:
  forwarded = request.headers.get("X-Forwarded-For")
  if forwarded:
    parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
    if parts:
      return parts[-1]
  real_ip = request.headers.get("X-Real-IP")
  if real_ip:
    return real_ip
  return request.client.host if request.client else ""


limiter = Limiter(key_func=_get_client_ip)


def write_rate_limit() -> str:
  if rate_limits_disabled():
    return "1000/second"
  return "30/minute"


def contest_rate_limit() -> str:
  if rate_limits_disabled():
    return "1000/second"
  return "5/minute"


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
  limit = exc.detail if isinstance(exc.detail, str) else ""
  problem = ProblemDetail(
      title="Too Many Requests",
      detail=f"rate limit exceeded ({limit})" if limit else "rate limit exceeded",
      status=429,
      code="rate_limit_exceeded",
      instance=request.url.path,
  )
  return JSONResponse(
      status_code=429,
      content=problem.model_dump(),
      media_type="application/problem+json",
  )


def create_access_token(player: Player, *, expires_in: int = JWT_EXPIRE_SECONDS) -> str:
  """Issue a bearer token whose subject is ``player.id``."""

  payload = {
      "sub": player.id,
      "name": player.name,
      "is_admin": bool(player.is_admin),
      "exp": utcnow() + timedelta(seconds=expires_in),
  }
  return jwt.encode(payload, get_jwt_secret(), algorithm=JWT_ALG)


def _unauthorized(detail: str, code: str):
  return http_problem(status_code=401, detail=detail, code=code)


async def get_current_player(
    authorization: str | None = Header(None),
    session: AsyncSession = Depends(get_session),
) -> Player:
  """Resolve the ``Authorization: Bearer <jwt>`` header to a :class:`Player`."""

  scheme, _, token = (authorization or "").partition(" ")
  if scheme.lower() != "bearer" or not token.strip():
    raise _unauthorized("missing token", "auth_missing_token")

  try:
    claims = jwt.decode(token.strip(), get_jwt_secret(), algorithms=[JWT_ALG])
  except jwt.ExpiredSignatureError:
    raise _unauthorized("token expired", "auth_token_expired")
  except jwt.PyJWTError:
    raise _unauthorized("invalid token", "auth_invalid_token")

  player = await session.get(Player, claims.get("sub"))
  if player is None:
    raise _unauthorized("player not found", "auth_player_not_found")
  return player
