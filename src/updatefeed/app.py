import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify

from .resolver import FeedSettings, UnsignedArtifactError, UpdateFeedResolver


logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

port = int(os.environ.get('PORT', '8080'))


def logEvent(event: str, level: str = 'INFO', **fields) -> None:
    record = {
        'event': event,
        'ts': datetime.now(timezone.utc).isoformat(),
        **fields,
    }
    serialized = json.dumps(record, ensure_ascii=False)
    logMethod = getattr(logging, level.lower(), logging.info)
    logMethod(serialized)


def makeJsonResponse(payload: dict, statusCode: int = 200):
    response = jsonify(payload)
    response.headers['Content-Type'] = 'application/json; charset=utf-8'
    return response, statusCode


def makeErrorResponse(statusCode: int, errorType: str, message: str, detail: str = ''):
    errorPayload = {
        'ok': False,
        'error_type': errorType,
        'message': message,
        'detail': detail,
    }
    return makeJsonResponse(errorPayload, statusCode)


def makeNoUpdateResponse():
    return '', 204


def createApp(settings: Optional[FeedSettings] = None) -> Flask:
    feedSettings = settings or FeedSettings.fromEnvironment()
    resolver = UpdateFeedResolver(feedSettings)

    flaskApp = Flask(__name__)
    flaskApp.config['FEED_SETTINGS'] = feedSettings
    flaskApp.config['FEED_RESOLVER'] = resolver

    def handleUpdateCheck(target: str, arch: str, currentVersion: str):
        try:
            descriptor = resolver.resolve(target, arch, currentVersion)
        except UnsignedArtifactError as error:
            logEvent(
                'update.unsigned_artifact',
                level='ERROR',
                platform=error.platformKey,
                signaturePath=error.signaturePath,
            )
            return makeErrorResponse(
                500,
                'UnsignedArtifact',
                'Update artifact is not signed',
                detail=error.platformKey,
            )

        if descriptor is None:
            logEvent(
                'update.none',
                target=target,
                arch=arch,
                currentVersion=currentVersion,
                latestVersion=feedSettings.latestVersion,
            )
            return makeNoUpdateResponse()

        if not descriptor.signature:
            logEvent('update.unsigned_served', level='WARNING', platform=descriptor.platformKey)

        logEvent(
            'update.offered',
            platform=descriptor.platformKey,
            currentVersion=currentVersion,
            latestVersion=descriptor.version,
        )
        return makeJsonResponse(descriptor.toJson())

    @flaskApp.route('/health', methods=['GET'])
    def healthCheck():
        return makeJsonResponse({'ok': True, 'version': feedSettings.latestVersion})

    @flaskApp.route('/<target>/<arch>/<currentVersion>', methods=['GET'])
    def updateCheck(target: str, arch: str, currentVersion: str):
        return handleUpdateCheck(target, arch, currentVersion)

    @flaskApp.route('/<path:prefix>/<target>/<arch>/<currentVersion>', methods=['GET'])
    def prefixedUpdateCheck(prefix: str, target: str, arch: str, currentVersion: str):
        return handleUpdateCheck(target, arch, currentVersion)

    return flaskApp


app = createApp()


if __name__ == '__main__':
    app.run(debug=False, host='0.0.0.0', port=port)
