"""
KETI MIG Slice Controller

MIG slice 를 workload(Pod) 에 할당하고 생성부터 정리까지 추적한다.
"""

__version__ = "0.1.0"
