"""
Request schemas shared by the message, contact and API key blueprints
"""
from datetime import timezone

from marshmallow import Schema, ValidationError, fields, post_load, validate, validates_schema

from outreach.models.message import PRIORITIES, SMS_MAX_LENGTH
from outreach.utils.validators import custom_field_key_validator, phone_validator


def naive_utc(value):
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def custom_fields_field():
    return fields.Dict(
        keys=fields.Str(validate=custom_field_key_validator),
        values=fields.Str(validate=validate.Length(max=1000)),
        load_default=None
    )


class MessageMetadataSchema(Schema):
    priority = fields.Str(load_default='normal', validate=validate.OneOf(PRIORITIES))
    scheduled_at = fields.DateTime(load_default=None)
    campaign_id = fields.Str(load_default=None, validate=validate.Length(max=64))
    template_id = fields.Str(load_default=None, validate=validate.Length(max=64))
    tags = fields.List(fields.Str(validate=validate.Length(min=1, max=50)), load_default=None)
    custom_fields = custom_fields_field()

    @post_load
    def normalize_schedule(self, data, **kwargs):
        data['scheduled_at'] = naive_utc(data.get('scheduled_at'))
        return data


class EmailContentSchema(MessageMetadataSchema):
    from_email = fields.Email(load_default=None)
    from_name = fields.Str(load_default=None, validate=validate.Length(max=100))
    subject = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    html = fields.Str(load_default=None)
    text = fields.Str(load_default=None)

    @validates_schema
    def validate_body(self, data, **kwargs):
        if not data.get('html') and not data.get('text'):
            raise ValidationError('Either html or text content is required', field_name='html')


class SendEmailSchema(EmailContentSchema):
    to = fields.Email(required=True)


class BulkEmailSchema(EmailContentSchema):
    recipients = fields.List(fields.Email(), required=True, validate=validate.Length(min=1))


class SMSContentSchema(MessageMetadataSchema):
    body = fields.Str(required=True, validate=validate.Length(min=1, max=SMS_MAX_LENGTH))
    from_number = fields.Str(data_key='from', load_default=None, validate=phone_validator)

    @post_load
    def rename_sender(self, data, **kwargs):
        data['from'] = data.pop('from_number', None)
        return data


class SendSMSSchema(SMSContentSchema):
    to = fields.Str(required=True, validate=phone_validator)


class BulkSMSSchema(SMSContentSchema):
    recipients = fields.List(fields.Str(validate=phone_validator), required=True,
                             validate=validate.Length(min=1))


class DateRangeSchema(Schema):
    start_date = fields.DateTime(data_key='startDate', load_default=None)
    end_date = fields.DateTime(data_key='endDate', load_default=None)

    @post_load
    def normalize_range(self, data, **kwargs):
        data['start_date'] = naive_utc(data.get('start_date'))
        data['end_date'] = naive_utc(data.get('end_date'))
        return data


class ListQuerySchema(DateRangeSchema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))
    campaign_id = fields.Str(load_default=None)


class EmailListQuerySchema(ListQuerySchema):
    status = fields.Str(load_default=None, validate=validate.OneOf(
        ('pending', 'sent', 'delivered', 'opened', 'clicked', 'bounced', 'failed')
    ))


class SMSListQuerySchema(ListQuerySchema):
    status = fields.Str(load_default=None, validate=validate.OneOf(
        ('pending', 'sent', 'delivered', 'failed', 'undelivered')
    ))
