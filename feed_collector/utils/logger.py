"""로깅 설정 및 유틸리티"""

import logging
import logging.config
import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config_path: Optional[str] = None, level: Optional[str] = None) -> None:
    """
    logging_config.yaml 기반 로깅 초기화.

    파일 핸들러의 logs 디렉토리는 자동 생성한다. 설정 파일이 없으면
    콘솔 basicConfig로 대체.

    Args:
        config_path: logging_config.yaml 경로. None이면 패키지 기본 경로 사용.
        level: 루트 로거 레벨 강제 지정 (예: "DEBUG"). 환경변수 FEED_COLLECTOR_LOG_LEVEL 우선.
    """
    if config_path is None:
        config_path = str(
            Path(__file__).parent.parent / "config" / "logging_config.yaml"
        )

    level = os.environ.get("FEED_COLLECTOR_LOG_LEVEL", level)

    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            log_config = yaml.safe_load(f) or {}

        for handler in log_config.get("handlers", {}).values():
            if "filename" in handler:
                log_dir = os.path.dirname(handler["filename"])
                if log_dir:
                    os.makedirs(log_dir, exist_ok=True)

        if level:
            log_config.setdefault("root", {})["level"] = level.upper()

        logging.config.dictConfig(log_config)
    else:
        logging.basicConfig(
            level=(level or "INFO").upper(),
            format=DEFAULT_FORMAT,
        )


def get_logger(name: str) -> logging.Logger:
    """
    모듈별 로거 반환.

    Args:
        name: 로거 이름 (예: "feed_collector.bypass.session_runner")
    """
    return logging.getLogger(name)
