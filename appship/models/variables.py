"""Build variable schema — declared kinds, constraints, and static defaults.

Every variable the pipeline consumes is declared here once.  The resolver
uses the declared ``kind`` to parse raw provider text, and the optional
``pattern`` / ``choices`` constraints to reject malformed candidates so that
resolution can fall through to the next provider.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ValueKind(str, Enum):
    """Declared type of a build variable."""

    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"


class VariableSpec(BaseModel):
    """Declaration of a single build variable."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ValueKind = ValueKind.STRING
    description: str = ""
    secret: bool = False  # never logged, masked in summaries
    pattern: str | None = None  # full-match regex for string values
    choices: tuple[str, ...] = ()
    max_length: int | None = None


# Apple allows alphanumerics, hyphens and periods in bundle identifiers.
BUNDLE_ID_PATTERN = r"[A-Za-z][A-Za-z0-9-]*(\.[A-Za-z0-9-]+)*"
TEAM_ID_PATTERN = r"[A-Z0-9]{10}"
VERSION_PATTERN = r"\d+(\.\d+){0,2}"

REQUIRED_KEYS: frozenset[str] = frozenset({"BUNDLE_ID", "APPLE_TEAM_ID", "OUTPUT_DIR"})

# Required in addition to REQUIRED_KEYS when IS_TESTFLIGHT is true.
UPLOAD_CREDENTIAL_KEYS: frozenset[str] = frozenset({
    "APP_STORE_CONNECT_KEY_IDENTIFIER",
    "APP_STORE_CONNECT_ISSUER_ID",
    "APP_STORE_CONNECT_PRIVATE_KEY_PATH",
})


def _spec(name: str, kind: ValueKind = ValueKind.STRING, description: str = "", **extra) -> VariableSpec:
    return VariableSpec(name=name, kind=kind, description=description, **extra)


_SPECS: list[VariableSpec] = [
    # Identity and signing
    _spec("BUNDLE_ID", description="Primary application bundle identifier.",
          pattern=BUNDLE_ID_PATTERN, max_length=255),
    _spec("APPLE_TEAM_ID", description="Signing team identifier.", pattern=TEAM_ID_PATTERN),
    _spec("PROFILE_TYPE", description="Distribution method for the export descriptor.",
          choices=("app-store", "ad-hoc", "enterprise", "development")),
    _spec("CODE_SIGN_STYLE", description="Xcode signing style.", choices=("Automatic", "Manual")),
    _spec("DEPLOYMENT_TARGET", description="Minimum OS version written to the manifest.",
          pattern=VERSION_PATTERN),
    # App metadata
    _spec("APP_NAME", description="Display name; also names the package file."),
    _spec("VERSION_NAME", description="Marketing version.", pattern=VERSION_PATTERN),
    _spec("VERSION_CODE", ValueKind.INTEGER, "Build number."),
    _spec("WORKFLOW_ID", description="CI workflow identifier."),
    # Layout
    _spec("OUTPUT_DIR", description="Working directory owned by one run."),
    _spec("PROJECT_DIR", description="Root of the application project."),
    _spec("MANIFEST_PATH", description="project.pbxproj path relative to PROJECT_DIR."),
    _spec("PODFILE_PATH", description="Podfile path relative to PROJECT_DIR."),
    _spec("MAIN_TARGET", description="Manifest target that receives identity settings."),
    _spec("BUILD_CONFIGURATIONS",
          description="Comma-separated configuration tiers to mutate; empty means all."),
    # External tools
    _spec("COMPILE_COMMAND", description="Compiler command template."),
    _spec("ARCHIVE_COMMAND", description="Archiver command template."),
    _spec("UPLOAD_COMMAND", description="Uploader command template."),
    _spec("TOOL_TIMEOUT_SECONDS", ValueKind.INTEGER, "Wall-clock limit per tool; 0 disables."),
    _spec("MIN_PACKAGE_BYTES", ValueKind.INTEGER, "Smallest acceptable uncompressed package."),
    # Distribution
    _spec("IS_TESTFLIGHT", ValueKind.BOOLEAN, "Upload the package after assembly."),
    _spec("APP_STORE_CONNECT_KEY_IDENTIFIER", description="Uploader API key id.", secret=True),
    _spec("APP_STORE_CONNECT_ISSUER_ID", description="Uploader API issuer id.", secret=True),
    _spec("APP_STORE_CONNECT_PRIVATE_KEY_PATH",
          description="Path to the uploader private key (.p8).", secret=True),
    # Notifications
    _spec("ENABLE_EMAIL_NOTIFICATIONS", ValueKind.BOOLEAN, "Send run notifications by email."),
    _spec("EMAIL_ID", description="Notification recipient."),
]

DEFAULT_SCHEMA: dict[str, VariableSpec] = {spec.name: spec for spec in _SPECS}

# Static defaults: the lowest-precedence provider.
DEFAULT_VALUES: dict[str, str] = {
    "APP_NAME": "QuikApp",
    "VERSION_NAME": "1.0.0",
    "VERSION_CODE": "1",
    "WORKFLOW_ID": "unknown",
    "OUTPUT_DIR": "output/ios",
    "PROFILE_TYPE": "app-store",
    "CODE_SIGN_STYLE": "Automatic",
    "PROJECT_DIR": ".",
    "MANIFEST_PATH": "ios/Runner.xcodeproj/project.pbxproj",
    "PODFILE_PATH": "ios/Podfile",
    "MAIN_TARGET": "Runner",
    "BUILD_CONFIGURATIONS": "",
    "IS_TESTFLIGHT": "false",
    "ENABLE_EMAIL_NOTIFICATIONS": "false",
    "TOOL_TIMEOUT_SECONDS": "0",
    "MIN_PACKAGE_BYTES": "1000000",
    "COMPILE_COMMAND": (
        "flutter build ios --release --no-codesign"
        " --build-name={VERSION_NAME} --build-number={VERSION_CODE}"
    ),
    "ARCHIVE_COMMAND": (
        "xcodebuild -workspace ios/Runner.xcworkspace -scheme Runner"
        " -configuration Release -archivePath {archive_path}"
        " -allowProvisioningUpdates archive"
    ),
    "UPLOAD_COMMAND": (
        "xcrun altool --upload-app --type ios -f {package_path}"
        " --apiKey {APP_STORE_CONNECT_KEY_IDENTIFIER}"
        " --apiIssuer {APP_STORE_CONNECT_ISSUER_ID}"
    ),
}
