import ipaddress

from fastapi import Request

DEFAULT_IP = "127.0.0.1"


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def get_client_ip(request: Request) -> str:
    """First entry of X-Forwarded-For, then X-Real-IP, then the loopback default."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
        if is_valid_ip(ip):
            return ip

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        ip = real_ip.strip()
        if is_valid_ip(ip):
            return ip

    return DEFAULT_IP
