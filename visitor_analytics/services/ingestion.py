from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
import structlog

from visitor_analytics.core.clock import Clock
from visitor_analytics.core.errors import PersistenceError
from visitor_analytics.schemas.event import EventPayload, IngestResult, VisitorClass
from visitor_analytics.services.bots import is_bot
from visitor_analytics.services.descriptors import country_from_timezone, parse_user_agent
from visitor_analytics.services.event_store import EventStore
from visitor_analytics.services.identity import resolve_identity
from visitor_analytics.services.ledger import DESCRIPTOR_FIELDS, VisitorLedger
from visitor_analytics.services.live import LiveBroker, to_live_event
from visitor_analytics.services.validation import validate_payload

logger = structlog.get_logger()


class IngestionService:
    """Validates, classifies and stores tracking events"""

    def __init__(
            self,
            session_factory: sessionmaker,
            store: EventStore,
            ledger: VisitorLedger,
            clock: Clock,
            broker: LiveBroker | None = None,
            max_payload_bytes: int = 4096,
            raw_payload_max_bytes: int = 1000,
            identity_salt: str = ""
    ):
        self.session_factory = session_factory
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.broker = broker
        self.max_payload_bytes = max_payload_bytes
        self.raw_payload_max_bytes = raw_payload_max_bytes
        self.identity_salt = identity_salt

    def ingest(
            self,
            raw: bytes | str,
            *,
            address: str | None,
            user_agent: str | None,
            base64_encoded: bool = False
    ) -> IngestResult:
        """
        Ingest one raw payload.

        Raises:
            ValidationError / PayloadTooLarge: rejected, nothing written
            PersistenceError: the event could not be stored
        """
        validated = validate_payload(
            raw,
            max_bytes=self.max_payload_bytes,
            raw_payload_max_bytes=self.raw_payload_max_bytes,
            base64_encoded=base64_encoded
        )
        payload = validated.payload

        # The request header wins over the UA echoed in the payload
        ua = user_agent or payload.ua
        identity = resolve_identity(address, ua, payload.session_token, self.identity_salt)
        bot = is_bot(ua, payload.automation)
        ts_ns = self.clock.now_ns()

        values = {
            "identity": identity,
            "ts_ns": ts_ns,
            "client_ts_ns": payload.client_ts_ns,
            "event_type": payload.event_type.value,
            "page": payload.page,
            "referrer": payload.referrer,
            "page_load_ms": payload.page_load_ms,
            "raw_payload": validated.raw_payload,
            **self._descriptors(payload, ua),
        }

        classification, live_event = self._persist(values, bot)

        logger.info(
            "event_ingested",
            identity=identity,
            event_type=payload.event_type.value,
            classification=classification.value
        )

        if self.broker is not None:
            self.broker.publish(live_event.model_dump())

        return IngestResult(identity=identity, classification=classification, server_ts_ns=ts_ns)

    @staticmethod
    def _descriptors(payload: EventPayload, user_agent: str | None) -> dict[str, str | None]:
        parsed = parse_user_agent(user_agent) if user_agent else {}
        return {
            "country": payload.country or country_from_timezone(payload.timezone),
            "os": payload.os or parsed.get("os"),
            "browser": payload.browser or parsed.get("browser"),
            "device_type": payload.device_type or parsed.get("device_type"),
            "resolution": payload.resolution,
            "timezone": payload.timezone,
        }

    def _persist(self, values: dict, bot: bool):
        """
        Write the ledger update and the event in one transaction.

        If the ledger cannot be updated the event is still stored, classified
        from the bot check alone; an event must never be lost to a ledger failure.
        """
        identity = values["identity"]
        descriptor_values = {key: values[key] for key in DESCRIPTOR_FIELDS}
        last_error = None

        with self.ledger.locked(identity):
            for attempt in range(2):
                try:
                    with self.session_factory() as session:
                        classification = self.ledger.record(
                            session, identity, values["ts_ns"], bot, descriptor_values
                        )
                        event = self.store.append(
                            session,
                            **values,
                            is_bot=classification == VisitorClass.BOT,
                            visitor_class=classification.value
                        )
                        session.flush()
                        live_event = to_live_event(event)
                        session.commit()
                        return classification, live_event
                except IntegrityError as e:
                    # Another writer created this identity's row first; retry as an update
                    logger.warning("ledger_insert_conflict", identity=identity, attempt=attempt)
                    last_error = e
                except SQLAlchemyError as e:
                    last_error = e
                    break

            logger.warning("ledger_update_failed", identity=identity, error=str(last_error))
            classification = VisitorClass.BOT if bot else VisitorClass.NEW

            try:
                with self.session_factory() as session:
                    event = self.store.append(
                        session,
                        **values,
                        is_bot=bot,
                        visitor_class=classification.value
                    )
                    session.flush()
                    live_event = to_live_event(event)
                    session.commit()
            except SQLAlchemyError as e:
                logger.error("event_insert_failed", identity=identity, error=str(e))
                raise PersistenceError("Failed to store event") from e

        return classification, live_event
