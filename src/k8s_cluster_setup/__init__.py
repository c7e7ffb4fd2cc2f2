"""
K8s Cluster Setup
kubeadm 기반 Kubernetes 컨트롤 플레인/워커 노드를 자동으로 구성하는 도구

Features:
- Ubuntu/Debian, CentOS/RHEL/Rocky/AlmaLinux/Fedora 지원
- containerd, CRI-O, Docker(cri-dockerd) 런타임 선택
- Weave, Calico, Flannel, Cilium CNI 선택
- idempotent 단계 실행 및 실패 시 즉시 중단
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
