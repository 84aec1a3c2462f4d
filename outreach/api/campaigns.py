from flask import Blueprint, g, jsonify, request
from marshmallow import Schema, fields, post_load, validate

from outreach.api.schemas import naive_utc
from outreach.models import Campaign
from outreach.models.campaign import CAMPAIGN_STATUSES
from outreach.services import get_campaign_service
from outreach.utils.auth import login_required
from outreach.utils.validators import paginate_query, validate_query_args, validate_request_json

campaigns_bp = Blueprint('campaigns', __name__)


class CampaignSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    subject = fields.Str(validate=validate.Length(min=1, max=200))
    html = fields.Str(allow_none=True)
    text = fields.Str(allow_none=True)
    template_id = fields.Str(allow_none=True)
    variables = fields.Dict(keys=fields.Str(), values=fields.Raw(allow_none=True))
    contact_group_ids = fields.List(fields.Str())
    contact_ids = fields.List(fields.Str())
    scheduled_at = fields.DateTime(allow_none=True)

    @post_load
    def normalize_schedule(self, data, **kwargs):
        if 'scheduled_at' in data:
            data['scheduled_at'] = naive_utc(data['scheduled_at'])
        return data


class CampaignUpdateSchema(CampaignSchema):
    status = fields.Str(validate=validate.OneOf(('draft', 'paused', 'cancelled')))


class CampaignQuerySchema(Schema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))
    status = fields.Str(load_default=None, validate=validate.OneOf(CAMPAIGN_STATUSES))


@campaigns_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(CampaignQuerySchema())
def list_campaigns():
    args = request.validated_args
    query = Campaign.query.filter_by(user_id=g.current_user.id)
    if args['status']:
        query = query.filter(Campaign.status == args['status'])

    campaigns, pagination = paginate_query(query.order_by(Campaign.created_at.desc()),
                                           args['page'], args['limit'])
    return jsonify({
        'success': True,
        'campaigns': [campaign.to_dict() for campaign in campaigns],
        'pagination': pagination
    }), 200


@campaigns_bp.route('', methods=['POST'])
@login_required('write')
@validate_request_json(CampaignSchema())
def create_campaign():
    """Create a draft, or a scheduled campaign when scheduled_at is given"""
    campaign = get_campaign_service().create(g.current_user.id, request.validated_data)
    return jsonify({'success': True, 'campaign': campaign.to_dict(include_content=True)}), 201


@campaigns_bp.route('/<campaign_id>', methods=['GET'])
@login_required('read')
def get_campaign(campaign_id):
    campaign = get_campaign_service().get_owned(campaign_id, g.current_user.id)
    return jsonify({'success': True, 'campaign': campaign.to_dict(include_content=True)}), 200


@campaigns_bp.route('/<campaign_id>', methods=['PUT'])
@login_required('write')
@validate_request_json(CampaignUpdateSchema(partial=True))
def update_campaign(campaign_id):
    service = get_campaign_service()
    campaign = service.update(service.get_owned(campaign_id, g.current_user.id),
                              request.validated_data)
    return jsonify({'success': True, 'campaign': campaign.to_dict(include_content=True)}), 200


@campaigns_bp.route('/<campaign_id>', methods=['DELETE'])
@login_required('write')
def delete_campaign(campaign_id):
    service = get_campaign_service()
    service.delete(service.get_owned(campaign_id, g.current_user.id))
    return jsonify({'success': True, 'message': 'Campaign deleted successfully'}), 200


@campaigns_bp.route('/<campaign_id>/send', methods=['POST'])
@login_required('write')
def send_campaign(campaign_id):
    """Send now to every subscribed recipient; quota is charged per email"""
    service = get_campaign_service()
    campaign = service.get_owned(campaign_id, g.current_user.id)
    results = service.send(campaign)

    sent = sum(1 for result in results if result['success'])
    return jsonify({
        'success': True,
        'campaign': campaign.to_dict(),
        'results': results,
        'summary': {'total': len(results), 'successful': sent, 'failed': len(results) - sent}
    }), 200


@campaigns_bp.route('/<campaign_id>/stats', methods=['GET'])
@login_required('read')
def campaign_stats(campaign_id):
    service = get_campaign_service()
    stats = service.stats(service.get_owned(campaign_id, g.current_user.id))
    return jsonify({'success': True, 'stats': stats}), 200
