"""
fly_deploy_kit
--------------

Fly.io 배포 및 파라미터 스토어 secret 동기화 CLI 패키지.
SSM Parameter Store(또는 Secret Manager) <-> .env 동기화, Fly 앱 확인/생성,
멀티 리전 동시 배포, IP 주소 정리를 환경변수 기반 설정으로 한 번에 처리하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
    "secrets_sync",
]
