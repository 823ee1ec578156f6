import os
from dataclasses import dataclass
from typing import Dict

# load .env first
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, HTTPException, Request
from google.oauth2 import id_token
from google.auth.transport.requests import Request as GoogleRequest
from sqlmodel import Session, select

from .database import get_session
from .errors import Forbidden
from .models import Role, User

FIREBASE_PROJECT_ID = os.environ.get("FIREBASE_PROJECT_ID")
ADMIN_EMAILS = {
    e.strip().lower() for e in os.environ.get("ADMIN_EMAILS", "").split(",") if e.strip()
}


@dataclass(frozen=True)
class Actor:
    """Who is making the request. The booking services only read these two fields."""
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def _verify_firebase_token(request: Request) -> Dict:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if not FIREBASE_PROJECT_ID:
        raise HTTPException(status_code=500, detail="FIREBASE_PROJECT_ID not configured")
    token = auth.split(" ", 1)[1]
    try:
        return id_token.verify_firebase_token(token, GoogleRequest(), audience=FIREBASE_PROJECT_ID)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Firebase token")


def get_current_actor(
    info: Dict = Depends(_verify_firebase_token),
    session: Session = Depends(get_session),
) -> Actor:
    email = info.get("email")
    if not email:
        raise HTTPException(status_code=401, detail="Token missing email")

    user = session.exec(select(User).where(User.email == email)).first()
    if not user:
        role = Role.ADMIN if email.lower() in ADMIN_EMAILS else Role.CUSTOMER
        user = User(
            name=info.get("name") or "New User",
            email=email,
            role=role.value,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
    return Actor(id=user.id, role=user.role)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise Forbidden("Not authorized as an admin")
    return actor
