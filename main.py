"""
main.py — Training Center CBT 서버 실행

    python main.py [--host HOST] [--port PORT] [--open-browser]
"""

import argparse
import logging
import sys
import threading
import webbrowser

import uvicorn

from config import DEFAULT_HOST, DEFAULT_PORT, LOG_FILE, OPEN_BROWSER

logger = logging.getLogger("training_center_cbt")

_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _setup_logging() -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    try:
        handlers.append(logging.FileHandler(LOG_FILE, encoding='utf-8'))
    except OSError as e:
        # 로그 파일을 열 수 없으면 콘솔만 사용
        print(f"로그 파일을 열 수 없습니다 ({LOG_FILE}): {e}", file=sys.stderr)
    logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT, handlers=handlers)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Training Center CBT 퀴즈 서버")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--open-browser", action="store_true", default=OPEN_BROWSER,
                        help="시작 후 /healthz를 브라우저로 연다")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    _setup_logging()

    from api.app import create_app

    app = create_app()
    url = f"http://{args.host}:{args.port}"
    logger.info(f"=== Training Center CBT 시작: {url} ===")

    if args.open_browser:
        threading.Timer(1.5, webbrowser.open, args=(f"{url}/healthz",)).start()

    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
    except KeyboardInterrupt:
        logger.info("사용자에 의해 종료되었습니다.")
    except OSError as e:
        logger.error(f"서버를 시작할 수 없습니다. 포트가 이미 사용 중인지 확인하세요: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
