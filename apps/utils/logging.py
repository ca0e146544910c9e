import datetime
import json
import logging

REDACTED = '***REDACTED***'


def mask_key(value, visible=4):
    """
    Show only the last few characters of a client token.
    """
    value = str(value)
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * (len(value) - visible) + value[-visible:]


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line for the dispatch services.

    Delivery, order and partner ids ride along as top-level fields;
    idempotency keys are masked; credentials and contact details are
    redacted wherever they appear in a dict message.
    """

    SENSITIVE_KEYS = {
        'password', 'token', 'access', 'refresh', 'secret',
        'authorization', 'api_key', 'key', 'signature',
        'phone', 'full_name', 'delivery_address', 'pickup_address',
    }
    MASKED_KEYS = {'idempotency_key', 'reference'}

    CONTEXT_FIELDS = ('delivery_id', 'order_id', 'partner_id')

    def _scrub(self, data):
        if isinstance(data, dict):
            scrubbed = {}
            for k, v in data.items():
                name = str(k).lower()
                if name in self.SENSITIVE_KEYS:
                    scrubbed[k] = REDACTED
                elif name in self.MASKED_KEYS and v:
                    scrubbed[k] = mask_key(v)
                else:
                    scrubbed[k] = self._scrub(v)
            return scrubbed
        if isinstance(data, (list, tuple)):
            return [self._scrub(i) for i in data]
        return data

    def format(self, record):
        if isinstance(record.msg, dict):
            record.msg = self._scrub(record.msg)
        if isinstance(record.args, dict):
            record.args = self._scrub(record.args)

        payload = {
            "ts": datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc).isoformat(),
            "lvl": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
            "line": record.lineno,
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = str(value)

        key = getattr(record, 'idempotency_key', None)
        if key:
            payload['idempotency_key'] = mask_key(key)

        if record.exc_info:
            exc = record.exc_info[1]
            # Domain errors carry a stable code; surface it for alerting
            code = getattr(exc, 'code', None)
            if isinstance(code, str):
                payload['error_code'] = code
                payload['retryable'] = bool(getattr(exc, 'retryable', False))
            payload['exc'] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)
