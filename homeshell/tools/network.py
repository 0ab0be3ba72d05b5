import logging
import re
import sys
import threading
import webbrowser
from typing import Optional

from pydantic import BaseModel

from .command_runner import HelperError, require_tool, run_captured, run_inherited

logger = logging.getLogger(__name__)

DEFAULT_SERVER_PORT = 8000
DEFAULT_PHP_PORT = 4000

PEM_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL
)
SUBJECT_CN_RE = re.compile(r"^\s*Subject:.*?\bCN\s*=\s*([^,/\n]+)", re.MULTILINE)
SAN_HEADER = "X509v3 Subject Alternative Name:"

# Trimmed certificate text: no headers, signatures or key dumps
X509_CERTOPT = "no_aux,no_header,no_issuer,no_pubkey,no_serial,no_sigdump,no_signame,no_validity,no_version"


class CertificateNames(BaseModel):
    common_name: Optional[str] = None
    alt_names: list[str] = []


def build_server_args(port: int = DEFAULT_SERVER_PORT) -> list[str]:
    return [sys.executable, "-m", "http.server", str(port)]


def server(port: int = DEFAULT_SERVER_PORT, open_browser: bool = False) -> int:
    """Serve the current directory over HTTP until interrupted."""
    if open_browser:
        url = f"http://localhost:{port}/"
        timer = threading.Timer(1.0, webbrowser.open, args=(url,))
        timer.daemon = True
        timer.start()
    return run_inherited(build_server_args(port))


def build_phpserver_args(port: int = DEFAULT_PHP_PORT, host: str = "localhost") -> list[str]:
    return ["php", "-S", f"{host}:{port}"]


def phpserver(port: int = DEFAULT_PHP_PORT, host: str = "localhost") -> int:
    """Run PHP's built-in web server in the current directory."""
    require_tool("php")
    return run_inherited(build_phpserver_args(port, host))


def build_dig_args(domain: str) -> list[str]:
    return ["dig", "+nocmd", domain, "any", "+multiline", "+noall", "+answer"]


def digga(domain: str) -> int:
    """Show every DNS record dig will return for a domain."""
    require_tool("dig")
    return run_inherited(build_dig_args(domain))


def extract_pem(s_client_output: str) -> Optional[str]:
    match = PEM_RE.search(s_client_output)
    if match is None:
        return None
    return match.group(0) + "\n"


def parse_certificate_names(x509_text: str) -> CertificateNames:
    """Pull the Common Name and DNS Subject Alternative Names out of ``openssl x509 -text``."""
    names = CertificateNames()

    cn_match = SUBJECT_CN_RE.search(x509_text)
    if cn_match:
        names.common_name = cn_match.group(1).strip()

    lines = x509_text.splitlines()
    for index, line in enumerate(lines):
        if SAN_HEADER in line and index + 1 < len(lines):
            for entry in lines[index + 1].split(","):
                entry = entry.strip()
                if entry.startswith("DNS:"):
                    names.alt_names.append(entry[len("DNS:"):])
            break

    return names


def getcertnames(domain: str, timeout: float = 15) -> CertificateNames:
    """
    Fetch a host's TLS certificate and list the names it is valid for.

    Args:
        domain: Host name to connect to on port 443
        timeout: Seconds to wait for each openssl call

    Returns:
        CertificateNames

    Raises:
        HelperError: If no certificate could be retrieved or decoded
    """
    require_tool("openssl")
    logger.info(f"Testing {domain}…")

    fetched = run_captured(
        ["openssl", "s_client", "-connect", f"{domain}:443", "-servername", domain],
        input_text="GET / HTTP/1.0\n",
        timeout=timeout,
    )
    pem = extract_pem(fetched.stdout or "")
    if pem is None:
        raise HelperError(f"ERROR: Certificate not found for {domain}.")

    decoded = run_captured(
        ["openssl", "x509", "-noout", "-text", "-certopt", X509_CERTOPT],
        input_text=pem,
        timeout=timeout,
    )
    if not decoded.success:
        raise HelperError(
            f"ERROR: Could not decode the certificate for {domain}: {(decoded.stderr or '').strip()}",
            exit_code=decoded.exit_code,
        )
    return parse_certificate_names(decoded.stdout or "")
