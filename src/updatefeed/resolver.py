import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

DEFAULT_LATEST_VERSION = '1.0.1'
DEFAULT_RELEASE_NOTES = 'Bug fixes and performance improvements'
DEFAULT_PUB_DATE = '2024-12-03T12:00:00Z'
DEFAULT_BASE_URL = 'https://pos.megacaresa.com/vopecsprinter/releases'
DEFAULT_SIGNATURE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'signatures')

artifactTemplates: Dict[str, str] = {
    'darwin-aarch64': 'VopecsPrinter_{version}_aarch64.app.tar.gz',
    'darwin-x86_64': 'VopecsPrinter_{version}_x64.app.tar.gz',
    'windows-x86_64': 'VopecsPrinter_{version}_x64-setup.nsis.zip',
    'linux-x86_64': 'VopecsPrinter_{version}_amd64.AppImage.tar.gz',
}

leadingIntegerPattern = re.compile(r'^\s*([+-]?\d+)')


class UnsignedArtifactError(RuntimeError):
    def __init__(self, platformKey: str, signaturePath: str):
        self.platformKey = platformKey
        self.signaturePath = signaturePath
        super().__init__(f'No signature available for {platformKey} (expected {signaturePath})')


def parseFlag(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in {'1', 'true', 'yes', 'on'}


@dataclass(frozen=True)
class FeedSettings:
    latestVersion: str = DEFAULT_LATEST_VERSION
    releaseNotes: str = DEFAULT_RELEASE_NOTES
    pubDate: str = DEFAULT_PUB_DATE
    baseUrl: str = DEFAULT_BASE_URL
    signatureDir: str = DEFAULT_SIGNATURE_DIR
    requireSignature: bool = False

    @classmethod
    def fromEnvironment(cls, environ: Optional[Dict[str, str]] = None) -> 'FeedSettings':
        env = os.environ if environ is None else environ
        return cls(
            latestVersion=env.get('UPDATE_LATEST_VERSION', '').strip() or DEFAULT_LATEST_VERSION,
            releaseNotes=env.get('UPDATE_RELEASE_NOTES', '').strip() or DEFAULT_RELEASE_NOTES,
            pubDate=env.get('UPDATE_PUB_DATE', '').strip() or DEFAULT_PUB_DATE,
            baseUrl=(env.get('UPDATE_BASE_URL', '').strip() or DEFAULT_BASE_URL).rstrip('/'),
            signatureDir=env.get('UPDATE_SIGNATURE_DIR', '').strip() or DEFAULT_SIGNATURE_DIR,
            requireSignature=parseFlag(env.get('UPDATE_REQUIRE_SIGNATURE')),
        )


@dataclass(frozen=True)
class UpdateDescriptor:
    platformKey: str
    version: str
    releaseNotes: str
    publishDate: str
    downloadUrl: str
    signature: str

    def toJson(self) -> dict:
        return {
            'version': self.version,
            'notes': self.releaseNotes,
            'pub_date': self.publishDate,
            'platforms': {
                self.platformKey: {
                    'url': self.downloadUrl,
                    'signature': self.signature,
                },
            },
        }


def parseVersionSegment(segment: str) -> int:
    match = leadingIntegerPattern.match(segment)
    if not match:
        return 0
    return int(match.group(1))


def parseVersion(version: str) -> list:
    normalized = (version or '').strip()
    if normalized[:1] in {'v', 'V'}:
        normalized = normalized[1:]
    return [parseVersionSegment(segment) for segment in normalized.split('.')]


def compareVersions(latest: str, current: str) -> int:
    """Sign of latest - current over dotted numeric segments.

    Missing trailing segments count as 0 and a segment without leading digits
    counts as 0, so "1.0" equals "1.0.0" and "1.x" equals "1.0".
    """
    latestParts = parseVersion(latest)
    currentParts = parseVersion(current)
    for index in range(max(len(latestParts), len(currentParts))):
        latestPart = latestParts[index] if index < len(latestParts) else 0
        currentPart = currentParts[index] if index < len(currentParts) else 0
        if latestPart > currentPart:
            return 1
        if latestPart < currentPart:
            return -1
    return 0


class UpdateFeedResolver:
    """Answers "is there a newer build for this platform?".

    Stateless apart from the settings it was built with; the only I/O is
    reading signature files.
    """

    def __init__(self, settings: Optional[FeedSettings] = None):
        self.settings = settings or FeedSettings()

    def signaturePath(self, platformKey: str) -> str:
        return os.path.join(self.settings.signatureDir, f'{platformKey}.sig')

    def readSignature(self, platformKey: str) -> str:
        path = self.signaturePath(platformKey)
        try:
            with open(path, 'r', encoding='utf-8') as handle:
                return handle.read().strip()
        except FileNotFoundError:
            return ''
        except OSError as error:
            logging.warning('Failed to read signature %s: %s', path, error)
            return ''

    def resolve(self, target: str, arch: str, currentVersion: str) -> Optional[UpdateDescriptor]:
        """Return the descriptor for a newer build, or None when there is nothing to offer.

        Raises:
            UnsignedArtifactError: the artifact has no signature and
                signatures are required.
        """
        settings = self.settings
        if compareVersions(settings.latestVersion, currentVersion) <= 0:
            return None

        platformKey = f'{target}-{arch}'
        template = artifactTemplates.get(platformKey)
        if template is None:
            return None

        signature = self.readSignature(platformKey)
        if not signature and settings.requireSignature:
            raise UnsignedArtifactError(platformKey, self.signaturePath(platformKey))

        fileName = template.format(version=settings.latestVersion)
        return UpdateDescriptor(
            platformKey=platformKey,
            version=settings.latestVersion,
            releaseNotes=settings.releaseNotes,
            publishDate=settings.pubDate,
            downloadUrl=f'{settings.baseUrl}/{fileName}',
            signature=signature,
        )
