from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import Annotated, Optional
from urllib.parse import urlparse

from . import config

bearer_scheme = HTTPBearer(auto_error=False)


class CustomerIdentity(BaseModel):
    customer_id: str
    email: str
    shop: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


# Function to create a signed customer session token
def create_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(days=config.CUSTOMER_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)
    return encoded_jwt


def create_customer_token(identity: CustomerIdentity) -> str:
    return create_token({
        "sub": identity.customer_id,
        "type": "customer",
        "email": identity.email,
        "shop": identity.shop,
        "first_name": identity.first_name,
        "last_name": identity.last_name,
    })


# Function to verify a customer session token
def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )


def _identity_from_payload(payload: dict) -> CustomerIdentity:
    if payload.get("type") != "customer" or not payload.get("sub") or not payload.get("shop"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )
    return CustomerIdentity(
        customer_id=payload["sub"],
        email=payload.get("email") or "",
        shop=payload["shop"],
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
    )


# Customer pages work without a session, so a missing token is not an error
async def get_optional_customer(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)]
) -> Optional[CustomerIdentity]:
    if credentials is None:
        return None
    return _identity_from_payload(verify_token(credentials.credentials))


async def get_current_customer(
    customer: Annotated[Optional[CustomerIdentity], Depends(get_optional_customer)]
) -> CustomerIdentity:
    if customer is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return customer


# Shopify signs embedded admin session tokens with the app secret; "dest" names the shop
def verify_admin_session_token(token: str) -> str:
    try:
        payload = jwt.decode(
            token,
            config.SHOPIFY_API_SECRET,
            algorithms=["HS256"],
            audience=config.SHOPIFY_API_KEY,
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate admin session",
        )

    shop = urlparse(payload.get("dest") or "").netloc
    if not shop:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin session has no shop"
        )
    return shop


async def get_current_shop(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)]
) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return verify_admin_session_token(credentials.credentials)
