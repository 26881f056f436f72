"""lazycurl options - catalog of common curl switches and request checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlsplit

from lazycurl.models import IdGenerator, Option, Request, body_is_empty
from lazycurl.substitution import OPEN

BASIC = "Basic Options"
REQUEST = "Request Options"
AUTHENTICATION = "Authentication Options"
CONNECTION = "Connection Options"
HEADER = "Header Options"
SSL = "SSL/TLS Options"
PROXY = "Proxy Options"
OUTPUT = "Output Options"
COMMAND_LINE = "Command Line Options"

CATEGORIES = [BASIC, REQUEST, AUTHENTICATION, CONNECTION, HEADER, SSL, PROXY, OUTPUT, COMMAND_LINE]

LONG_TIMEOUT = 300


@dataclass(frozen=True)
class OptionDefinition:
    flag: str
    long_flag: str | None
    description: str
    takes_value: bool
    category: str

    def matches(self, flag: str) -> bool:
        return flag == self.flag or (self.long_flag is not None and flag == self.long_flag)


def _opt(flag, long_flag, description, takes_value, category) -> OptionDefinition:
    return OptionDefinition(flag, long_flag, description, takes_value, category)


CATALOG: list[OptionDefinition] = [
    # ── Basic
    _opt("-#", "--progress-bar", "Display transfer progress as a bar", False, BASIC),
    _opt("-L", "--location", "Follow redirects", False, BASIC),
    _opt("-f", "--fail", "Fail silently on server errors", False, BASIC),
    # ── Request
    _opt("-X", "--request", "HTTP method to use", True, REQUEST),
    _opt("-d", "--data", "HTTP POST data", True, REQUEST),
    _opt("--data-binary", None, "HTTP POST binary data", True, REQUEST),
    _opt("--data-urlencode", None, "HTTP POST data url encoded", True, REQUEST),
    _opt("-F", "--form", "Specify multipart MIME data", True, REQUEST),
    # ── Authentication
    _opt("-u", "--user", "Server user and password", True, AUTHENTICATION),
    _opt("--basic", None, "Use HTTP Basic Authentication", False, AUTHENTICATION),
    _opt("--digest", None, "Use HTTP Digest Authentication", False, AUTHENTICATION),
    _opt("--ntlm", None, "Use HTTP NTLM authentication", False, AUTHENTICATION),
    _opt("--oauth2-bearer", None, "OAuth 2 Bearer Token", True, AUTHENTICATION),
    # ── Connection
    _opt("-k", "--insecure", "Allow insecure server connections", False, CONNECTION),
    _opt("--connect-timeout", None, "Maximum time allowed for connection", True, CONNECTION),
    _opt("-m", "--max-time", "Maximum time allowed for the transfer", True, CONNECTION),
    _opt("-4", "--ipv4", "Resolve names to IPv4 addresses", False, CONNECTION),
    _opt("-6", "--ipv6", "Resolve names to IPv6 addresses", False, CONNECTION),
    # ── Header
    _opt("-H", "--header", "Pass custom header(s) to server", True, HEADER),
    _opt("-A", "--user-agent", "Send User-Agent to server", True, HEADER),
    _opt("-e", "--referer", "Referer URL", True, HEADER),
    _opt("-b", "--cookie", "Send cookies from string/file", True, HEADER),
    _opt("-c", "--cookie-jar", "Write cookies to file after operation", True, HEADER),
    # ── SSL/TLS
    _opt("--cacert", None, "CA certificate to verify peer against", True, SSL),
    _opt("--cert", None, "Client certificate file", True, SSL),
    _opt("--key", None, "Private key file name", True, SSL),
    _opt("--ciphers", None, "SSL ciphers to use", True, SSL),
    _opt("--tls-max", None, "Set maximum allowed TLS version", True, SSL),
    # ── Proxy
    _opt("-x", "--proxy", "Use proxy", True, PROXY),
    _opt("--proxy-basic", None, "Use Basic authentication on the proxy", False, PROXY),
    _opt("--proxy-digest", None, "Use Digest authentication on the proxy", False, PROXY),
    _opt("--noproxy", None, "List of hosts which do not use proxy", True, PROXY),
    _opt("-p", "--proxytunnel", "Operate through an HTTP proxy tunnel", False, PROXY),
    # ── Output
    _opt("-o", "--output", "Write to file instead of stdout", True, OUTPUT),
    _opt("-O", "--remote-name", "Write output to a file named as the remote file", False, OUTPUT),
    _opt("-J", "--remote-header-name", "Use the header-provided filename", False, OUTPUT),
    _opt("--create-dirs", None, "Create necessary local directory hierarchy", False, OUTPUT),
    _opt("-w", "--write-out", "Use output FORMAT after completion", True, OUTPUT),
    # ── Command line
    _opt("-v", "--verbose", "Make the operation more talkative", False, COMMAND_LINE),
    _opt("-s", "--silent", "Silent mode", False, COMMAND_LINE),
    _opt("-S", "--show-error", "Show error even when silent", False, COMMAND_LINE),
    _opt("-i", "--include", "Include protocol response headers in the output", False, COMMAND_LINE),
    _opt("-I", "--head", "Show document info only", False, COMMAND_LINE),
    _opt("--trace", None, "Write a debug trace to FILE", True, COMMAND_LINE),
    _opt("--trace-ascii", None, "Like --trace, but without hex output", True, COMMAND_LINE),
    _opt("--trace-time", None, "Add time stamps to trace/verbose output", False, COMMAND_LINE),
]


def find_option(flag: str) -> OptionDefinition | None:
    """Look up a catalog entry by its short or long flag."""
    for definition in CATALOG:
        if definition.matches(flag):
            return definition
    return None


def options_in_category(category: str) -> list[OptionDefinition]:
    return [d for d in CATALOG if d.category == category]


def create_option(ids: IdGenerator, flag: str) -> Option:
    """New enabled Option for ``flag``; value-taking flags start with ''."""
    definition = find_option(flag)
    takes_value = definition.takes_value if definition else False
    return Option(ids.next_id(), flag, "" if takes_value else None)


# ── Validation ───────────────────────────────────────────────────────────


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_url(url: str) -> str | None:
    """Return an error message for ``url``, or None when it looks usable."""
    if not url.strip():
        return "URL cannot be empty"
    if OPEN in url:
        # Tokens are resolved at build time.
        return None
    try:
        parts = urlsplit(url)
    except ValueError as e:
        return str(e)
    if not parts.scheme:
        return "relative URL without a base"
    if not parts.netloc:
        return "empty host"
    return None


def validate_request(request: Request) -> ValidationReport:
    """Check a request for problems curl would reject or that look risky.

    Errors and warnings are advisory: execution is never blocked by them.
    """
    report = ValidationReport()

    problem = validate_url(request.url)
    if problem:
        report.errors.append(f"Invalid URL: {problem}")

    enabled = [o for o in request.options if o.enabled]
    flags = {o.flag for o in enabled}

    if flags & {"-s", "--silent"} and flags & {"-v", "--verbose"}:
        report.errors.append(
            "Conflicting options: -s (silent) and -v (verbose) cannot be used together",
        )
    if flags & {"-I", "--head"} and not body_is_empty(request.body):
        report.errors.append("Conflicting options: -I (head) cannot be used with a request body")

    for option in enabled:
        definition = find_option(option.flag)
        if definition and definition.takes_value and not (option.value or "").strip():
            report.errors.append(f"Option {option.flag} requires a value")

    if flags & {"-k", "--insecure"}:
        report.warnings.append(
            "The -k/--insecure option disables SSL certificate verification, "
            "which may be insecure",
        )
    for option in enabled:
        if option.flag in ("-m", "--max-time") and option.value:
            try:
                timeout = float(option.value)
            except ValueError:
                continue
            if timeout > LONG_TIMEOUT:
                report.warnings.append(
                    f"Long timeout value ({option.value}s) may cause the command to hang",
                )
    return report
