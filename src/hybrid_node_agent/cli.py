"""
CLI 메인 인터페이스
Click 및 Rich 기반 하이브리드 노드 부트스트랩 명령
"""

import signal
import sys
import threading
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Config
from .errors import AgentError
from .flows import NodeAgent
from .hybrid import HybridNodeProvider
from .logger import get_logger, init_logger
from .validation import ConsolePrinter, ValidationError, ValidationReport, is_remediable, remediation

console = Console()


def load_config(config_path: Optional[str]) -> Config:
    if config_path:
        return Config(config_path)
    return Config.from_default_paths()


def show_summary(agent: NodeAgent):
    """실행 결과 요약 표시"""
    table = Table(show_header=True, header_style="bold magenta", title="실행 결과 요약")
    table.add_column("단계", style="cyan")
    table.add_column("상태", width=6)
    table.add_column("메시지")

    for step in agent.steps:
        ok = step.status == "success"
        color = "green" if ok else "red"
        table.add_row(step.step, f"[{color}]{'✓' if ok else '✗'}[/{color}]", step.message)

    console.print(table)

    for report in agent.reports:
        show_report(report)

    log_files = get_logger().get_log_files()
    if log_files["main_log"]:
        console.print("\n[bold]로그 파일:[/bold]")
        console.print(f"  Main: {log_files['main_log']}")
        console.print(f"  Error: {log_files['error_log']}")


def show_report(report: ValidationReport):
    if not report.results:
        return
    table = Table(show_header=True, header_style="bold magenta", title="검증 결과")
    table.add_column("검증", style="cyan")
    table.add_column("상태")
    table.add_column("조치 안내")

    colors = {"passed": "green", "warning": "yellow", "failed": "red", "skipped": "dim", "running": "white"}
    for result in report.results:
        color = colors[result.status]
        table.add_row(result.name, f"[{color}]{result.status}[/{color}]", remediation(result.error))
    console.print(table)


def report_error(err: Exception):
    """치명적 오류와 조치 안내를 그대로 출력"""
    console.print(f"\n[red]✗ {err}[/red]")
    if is_remediable(err):
        console.print(f"[bold]Remediation:[/bold] {remediation(err)}")


def build_agent(config_path: Optional[str], skip, install_root: str, debug: bool) -> NodeAgent:
    cfg = load_config(config_path)
    init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug)

    cancel = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())

    provider = HybridNodeProvider(cfg, skip=list(skip), install_root=install_root, cancel=cancel)
    return NodeAgent(provider, ConsolePrinter(console))


def run_flow(agent: NodeAgent, flow: str):
    """흐름 실행 후 요약 표시. 치명적 오류에서만 0이 아닌 종료 코드"""
    logger = get_logger()
    try:
        getattr(agent, flow)()
    except (AgentError, ValidationError) as e:
        logger.error(f"{flow} failed: {e}")
        show_summary(agent)
        report_error(e)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]사용자에 의해 중단되었습니다.[/yellow]")
        logger.warning("Execution interrupted by user")
        sys.exit(130)

    show_summary(agent)
    console.print(f"\n[bold green]✓ {flow} 완료[/bold green]")


def common_options(func):
    func = click.option('--debug', is_flag=True, help='디버그 모드')(func)
    func = click.option('--install-root', default='/', show_default=True,
                        help='파일을 쓸 루트 디렉토리')(func)
    func = click.option('--skip', multiple=True, help='건너뛸 검증 이름 (여러 번 지정 가능)')(func)
    func = click.option('--config', '-c', 'config_path', type=click.Path(exists=True),
                        help='설정 파일 경로')(func)
    return func


@click.group()
@click.version_option(version=__version__)
def cli():
    """Hybrid Node Agent

    온프레미스 머신을 관리형 Kubernetes 클러스터의 하이브리드 노드로 조인합니다.
    """


@cli.command()
@common_options
def init(config_path, skip, install_root, debug):
    """자격 증명 구성, 검증 후 containerd/kubelet 실행"""
    console.print(Panel.fit("[bold cyan]Hybrid Node Agent[/bold cyan]\n노드를 클러스터에 조인합니다.",
                            border_style="cyan"))
    run_flow(build_agent(config_path, skip, install_root, debug), "init")


@cli.command()
@common_options
def upgrade(config_path, skip, install_root, debug):
    """노드 데몬을 현재 설정으로 다시 구성"""
    run_flow(build_agent(config_path, skip, install_root, debug), "upgrade")


@cli.command()
@common_options
def uninstall(config_path, skip, install_root, debug):
    """데몬 중지, SSM 등록 해제, 작성한 파일 제거"""
    run_flow(build_agent(config_path, skip, install_root, debug), "uninstall")


@cli.command()
@common_options
def debug(config_path, skip, install_root, debug):
    """부작용 없이 노드 검증 실행"""
    agent = build_agent(config_path, skip, install_root, debug)
    try:
        report = agent.debug()
    except (AgentError, ValidationError) as e:
        show_summary(agent)
        report_error(e)
        sys.exit(1)
    show_summary(agent)
    sys.exit(0 if report.passed else 1)


@cli.command('sample-config')
@click.argument('output', type=click.Path(), default='./config.yaml')
def sample_config(output):
    """샘플 설정 파일 생성"""
    Config().create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  hybrid-node-agent init --config {output}[/cyan]")


@cli.command('validate-config')
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
def validate_config(config_path):
    """설정 파일 유효성 검사 (부작용 없음)"""
    try:
        cfg = load_config(config_path)
        HybridNodeProvider(cfg).validate_config()
    except (AgentError, ValidationError) as e:
        report_error(e)
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    table.add_row("클러스터", cfg.cluster.name)
    table.add_row("리전", cfg.cluster.region)
    table.add_row("자격 증명 방식", cfg.credential_strategy.value)
    table.add_row("API 엔드포인트", cfg.cluster.api_server_endpoint or "[yellow]DescribeCluster로 조회[/yellow]")
    table.add_row("자격 증명 파일", "예" if cfg.hybrid.enable_credentials_file else "아니오")
    console.print(table)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
