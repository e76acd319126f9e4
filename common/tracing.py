import logging
import os
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiokafka import AIOKafkaInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

def setup_telemetry(app: FastAPI, engine=None) -> None:
    """
    Sets up OpenTelemetry for the FastAPI application.
    Spans are exported over OTLP (Jaeger accepts OTLP natively) and the
    FastAPI app, the SQLAlchemy engine and aiokafka are instrumented.
    """
    service_name = os.getenv("OTEL_SERVICE_NAME")
    if not service_name:
        logger.warning("OTEL_SERVICE_NAME environment variable not set. Defaulting to 'dispatch_api'.")
        service_name = "dispatch_api"

    resource = Resource(attributes={
        "service.name": service_name
    })

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(provider)

    logger.info(f"Telemetry setup for service: {service_name}")
    logger.info(f"OTLP endpoint: {endpoint}")

    # Instrument the FastAPI application.
    FastAPIInstrumentor.instrument_app(app)

    # Instrument other libraries
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy engine has been instrumented.")
    AIOKafkaInstrumentor().instrument()

    logger.info("FastAPI and AIOKafka have been instrumented.")
