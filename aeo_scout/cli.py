# === FILE: aeo_scout/cli.py ===
#!/usr/bin/env python3
"""
Точка входа для запуска AEO Scout через командную строку.

Команды:
  crawl     Запустить обход по конфигу и вывести/сохранить отчёты
  analyze   Проанализировать одну страницу домена
  config    Показать проверенную конфигурацию

Общие опции:
  --log-level LEVEL   Уровень логирования (DEBUG, INFO, ...)
  --log-file PATH     Файл для логов (stdout, если не указан)
  --log-format FORMAT Формат логирования (e.g. "%(asctime)s %(levelname)s %(message)s")

Команда crawl опции:
  --config PATH       Путь к YAML/JSON-конфигу проекта
  --json PATH         Сохранить JSON-отчёт в файл
  --html PATH         Сохранить HTML-отчёт в файл
  --template DIR      Папка с Jinja2-шаблонами (по умолчанию встроенный шаблон)
  --pretty            Преформатировать JSON-вывод (отступ 2)
  --timeout SEC       Таймаут всего обхода (секунд)

Переменные окружения OPENAI_API_KEY, AEO_* настраивают LLM и кэши
(см. aeo_scout.config.EngineSettings).

Пример:
  aeo-scout crawl --config project.yaml --json report.json --pretty
"""
import asyncio
import json
import sys
from pathlib import Path

import click

from aeo_scout import __version__
from aeo_scout.aggregator import aggregate_results
from aeo_scout.config import load_config
from aeo_scout.engine import Engine, RunStatus
from aeo_scout.logger import init_logging
from aeo_scout.report.html_report import render_html
from aeo_scout.report.json_report import render_json

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def make_engine() -> Engine:
    """Engine с настройками из окружения; тесты подменяют эту функцию."""
    return Engine()


def _load(config_path: Path):
    try:
        return load_config(config_path)
    except Exception as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')


config_option = click.option(
    '--config', '-c', 'config_path',
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации YAML/JSON.'
)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='AEO Scout, version %(version)s')
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Уровень логирования'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к файлу логов (stdout, если не указан)'
)
@click.option(
    '--log-format', 'log_format',
    default='%(asctime)s %(levelname)s %(message)s',
    show_default=True,
    help='Строка формата для логов'
)
@click.pass_context
def cli(ctx, log_level, log_file, log_format):
    """Группа команд AEO Scout CLI."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    ctx.ensure_object(dict)


@cli.command('crawl', context_settings=CONTEXT_SETTINGS)
@config_option
@click.option(
    '--json', '-j', 'json_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить JSON-отчёт в файл'
)
@click.option(
    '--html', '-h', 'html_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить HTML-отчёт в файл'
)
@click.option(
    '--template', '-t', 'template_dir',
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help='Папка с Jinja2-шаблонами'
)
@click.option(
    '--pretty', is_flag=True,
    help='Преформатировать JSON-вывод (отступ 2)'
)
@click.option(
    '--timeout', 'crawl_timeout',
    type=float,
    default=None,
    help='Таймаут всего обхода (секунд)'
)
def crawl(config_path, json_output, html_output, template_dir, pretty, crawl_timeout):
    """Запустить обход и сгенерировать отчёты."""
    cfg = _load(config_path)
    click.echo(f'Starting {cfg.run_type.value} crawl of {cfg.base_url}')
    engine = make_engine()

    async def _run():
        try:
            if crawl_timeout:
                return await asyncio.wait_for(engine.crawl(cfg), timeout=crawl_timeout)
            return await engine.crawl(cfg)
        finally:
            await engine.aclose()

    try:
        run = asyncio.run(_run())
    except asyncio.TimeoutError:
        print_error(f'Обход не завершён за {crawl_timeout} секунд')
    except Exception as e:
        print_error(f'Ошибка при обходе: {e}')

    if run.status is RunStatus.FAILED:
        print_error(f'Запуск {run.id} завершился с ошибкой: {run.reason}')

    report = aggregate_results(
        run.results,
        run_id=run.id,
        pages_discovered=run.pages_discovered,
        tokens_used=run.token_usage,
        stop_reason=run.reason,
    )

    # Если не сохраняем в файл, печатаем в stdout
    if not json_output and not html_output:
        click.echo(report.json(pretty=pretty))
        return

    # JSON-отчёт
    if json_output:
        try:
            saved_json = render_json(report, json_output, pretty=pretty)
            click.echo(f'JSON report: {saved_json}')
        except Exception as e:
            print_error(f'Ошибка при сохранении JSON: {e}')

    # HTML-отчёт
    if html_output:
        try:
            saved_html = render_html(report, template_dir, html_output)
            click.echo(f'HTML report: {saved_html}')
        except Exception as e:
            print_error(f'Ошибка при сохранении HTML: {e}')


@cli.command('analyze', context_settings=CONTEXT_SETTINGS)
@click.argument('domain')
@click.option('--url', '-u', 'url', default=None, help='Конкретная страница (по умолчанию корень домена)')
@click.option('--pretty', is_flag=True, help='Преформатировать JSON-вывод (отступ 2)')
def analyze(domain, url, pretty):
    """Проанализировать одну страницу и вывести оценки и рекомендации."""
    engine = make_engine()

    async def _run():
        try:
            return await engine.analyze_domain(domain, url)
        finally:
            await engine.aclose()

    try:
        result = asyncio.run(_run())
    except Exception as e:
        print_error(f'Ошибка при анализе: {e}')

    click.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2 if pretty else None))


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@config_option
def show_config(config_path):
    """Показать проверенную конфигурацию в JSON."""
    cfg = _load(config_path)
    click.echo(cfg.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
