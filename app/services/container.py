from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from app.config import AppConfig
from app.services.ai.llm_backends import LLMBackend, create_backend
from app.services.ai.plan_prompt_builder import PlanPromptBuilder
from app.services.ai.plan_synthesis import PlanSynthesisOrchestrator
from app.services.ai.rule_based_planner import RuleBasedPlanGenerator
from app.services.ai.task_analysis import TaskAnalysisService
from app.services.application.care_plan_service import CarePlanService
from app.services.application.completion_token_service import CompletionTokenService
from app.services.application.notifications_service import NotificationDispatcher
from app.services.application.reminder_service import ReminderService
from app.services.utilities.email_service import EmailConfig, EmailService
from app.services.utilities.weather_service import OpenMeteoForecastProvider
from app.utils.ids import IdGenerator
from app.workers.unified_scheduler import UnifiedScheduler
from infrastructure.database.repositories.completion_tokens import CompletionTokenRepository
from infrastructure.database.repositories.plants import PlantRepository
from infrastructure.database.repositories.treatments import TreatmentCatalogRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Aggregate and manage the care plan services."""

    config: AppConfig
    database: SQLiteDatabaseHandler
    plant_repo: PlantRepository
    token_repo: CompletionTokenRepository
    treatment_repo: TreatmentCatalogRepository
    audit_logger: AuditLogger
    notifier: NotificationDispatcher
    forecast_provider: OpenMeteoForecastProvider
    llm_backend: LLMBackend | None
    prompt_builder: PlanPromptBuilder
    synthesizer: PlanSynthesisOrchestrator
    task_analysis: TaskAnalysisService
    care_plan_service: CarePlanService
    token_service: CompletionTokenService
    reminder_service: ReminderService
    scheduler: UnifiedScheduler

    @classmethod
    def build(cls, config: AppConfig) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        A missing or failing text-generation backend is not fatal: plans
        fall back to the rule-based generator and task analyses to the
        generic guidance.
        """
        logger.info("Building ServiceContainer (env=%s)", config.environment)

        database = SQLiteDatabaseHandler(config.database_path)
        database.init_app()

        plant_repo = PlantRepository(database)
        token_repo = CompletionTokenRepository(database)
        treatment_repo = TreatmentCatalogRepository(database)
        audit_logger = AuditLogger(config.audit_log_path, level=config.log_level)

        email_service = None
        if config.smtp_host:
            email_service = EmailService(
                EmailConfig(
                    smtp_host=config.smtp_host,
                    smtp_port=config.smtp_port,
                    smtp_username=config.smtp_username,
                    smtp_password=config.smtp_password,
                    smtp_use_tls=config.smtp_use_tls,
                    from_address=config.smtp_from,
                )
            )
        else:
            logger.info("SMTP not configured; notifications will be logged only")
        notifier = NotificationDispatcher(email_service)

        forecast_provider = OpenMeteoForecastProvider(
            base_url=config.weather_base_url,
            timeout=config.weather_timeout,
        )

        llm_backend = create_backend(
            config.llm_provider,
            api_key=config.llm_api_key or "",
            model=config.llm_model or "",
            base_url=config.llm_base_url,
            timeout=int(max(config.plan_generation_timeout, config.task_analysis_timeout)),
        )

        ids = IdGenerator()
        prompt_builder = PlanPromptBuilder(treatment_repo)
        synthesizer = PlanSynthesisOrchestrator(
            llm_backend,
            prompt_builder,
            RuleBasedPlanGenerator(ids),
            ids,
            timeout=config.plan_generation_timeout,
            max_tokens=config.plan_max_tokens,
            temperature=config.llm_temperature,
        )
        task_analysis = TaskAnalysisService(
            llm_backend,
            treatment_repo,
            timeout=config.task_analysis_timeout,
            max_tokens=config.task_analysis_max_tokens,
            cache_ttl=config.task_analysis_cache_ttl,
        )

        care_plan_service = CarePlanService(
            plant_repo,
            forecast_provider,
            prompt_builder,
            synthesizer,
            task_analysis,
            ids=ids,
            notifier=notifier,
            audit_logger=audit_logger,
            auto_refresh_on_resolve=config.auto_refresh_on_resolve,
        )
        token_service = CompletionTokenService(
            token_repo,
            plant_repo,
            notifier,
            audit_logger,
            expiry=config.completion_token_expiry,
            base_url=config.public_base_url,
        )
        reminder_service = ReminderService(
            plant_repo,
            token_service,
            notifier,
            lead_time=timedelta(minutes=config.reminder_lead_minutes),
            missed_grace=timedelta(minutes=config.missed_task_grace_minutes),
            missed_interval=timedelta(minutes=config.missed_task_interval_minutes),
            default_timezone=config.default_timezone,
        )

        container = cls(
            config=config,
            database=database,
            plant_repo=plant_repo,
            token_repo=token_repo,
            treatment_repo=treatment_repo,
            audit_logger=audit_logger,
            notifier=notifier,
            forecast_provider=forecast_provider,
            llm_backend=llm_backend,
            prompt_builder=prompt_builder,
            synthesizer=synthesizer,
            task_analysis=task_analysis,
            care_plan_service=care_plan_service,
            token_service=token_service,
            reminder_service=reminder_service,
            scheduler=UnifiedScheduler(),
        )

        # Tasks need the full container, so they are registered last.
        from app.workers.scheduled_tasks import register_all_tasks

        register_all_tasks(container.scheduler, container)
        logger.info(
            "ServiceContainer built (llm=%s)",
            llm_backend.name if llm_backend is not None else "rule_based",
        )
        return container

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        try:
            self.scheduler.stop()
        except RuntimeError as exc:
            logger.warning("Failed to stop scheduler: %s", exc)

        self.audit_logger.close()
        self.database.close_db()
        logger.info("ServiceContainer shutdown complete.")
