from flask import Blueprint, g, jsonify, request
from marshmallow import Schema, fields, validate
from sqlalchemy import func, or_

from outreach.exceptions import NotFoundError, PermissionDeniedError
from outreach.extensions import db
from outreach.models import Campaign, EmailTemplate
from outreach.models.template import TEMPLATE_CATEGORIES
from outreach.utils.auth import login_required
from outreach.utils.validators import paginate_query, validate_query_args, validate_request_json

templates_bp = Blueprint('templates', __name__)


class TemplateVariableSchema(Schema):
    name = fields.Str(required=True, validate=validate.Regexp(r'^[A-Za-z_][A-Za-z0-9_]{0,49}$'))
    description = fields.Str(load_default='', validate=validate.Length(max=200))
    default_value = fields.Str(load_default='')


class TemplateSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    subject = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    html = fields.Str(required=True, validate=validate.Length(min=1))
    text = fields.Str(required=True, validate=validate.Length(min=1))
    category = fields.Str(validate=validate.OneOf(TEMPLATE_CATEGORIES))
    tags = fields.List(fields.Str(validate=validate.Length(min=1, max=50)))
    variables = fields.List(fields.Nested(TemplateVariableSchema))
    is_public = fields.Bool()


class TemplateQuerySchema(Schema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))
    category = fields.Str(load_default=None, validate=validate.OneOf(TEMPLATE_CATEGORIES))
    search = fields.Str(load_default=None, validate=validate.Length(min=1, max=100))
    include_public = fields.Bool(load_default=True)


class RenderSchema(Schema):
    variables = fields.Dict(keys=fields.Str(), values=fields.Raw(allow_none=True), load_default=dict)


def _visible_template(template_id):
    template = EmailTemplate.get_visible(template_id, g.current_user.id)
    if template is None:
        raise NotFoundError('Template not found')
    return template


def _owned_template(template_id):
    template = _visible_template(template_id)
    if template.user_id != g.current_user.id:
        raise PermissionDeniedError('Only the owner can modify this template')
    return template


@templates_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(TemplateQuerySchema())
def list_templates():
    """Own templates, plus public ones unless include_public=false"""
    args = request.validated_args
    query = EmailTemplate.visible_to(g.current_user.id, category=args['category'],
                                     include_public=args['include_public'])
    if args['search']:
        pattern = f"%{args['search']}%"
        query = query.filter(or_(EmailTemplate.name.ilike(pattern),
                                 EmailTemplate.subject.ilike(pattern)))

    query = query.order_by(EmailTemplate.last_used.desc(), EmailTemplate.created_at.desc())
    templates, pagination = paginate_query(query, args['page'], args['limit'])
    return jsonify({
        'success': True,
        'templates': [template.to_dict() for template in templates],
        'pagination': pagination
    }), 200


@templates_bp.route('', methods=['POST'])
@login_required('write')
@validate_request_json(TemplateSchema())
def create_template():
    template = EmailTemplate(user_id=g.current_user.id, **request.validated_data)
    db.session.add(template)
    db.session.commit()
    return jsonify({'success': True, 'template': template.to_dict()}), 201


@templates_bp.route('/categories', methods=['GET'])
@login_required('read')
def template_categories():
    """Template counts per category, most used category first"""
    count = func.count(EmailTemplate.id)
    rows = db.session.query(EmailTemplate.category, count).filter(
        or_(EmailTemplate.user_id == g.current_user.id, EmailTemplate.is_public.is_(True))
    ).group_by(EmailTemplate.category).order_by(count.desc(), EmailTemplate.category).all()

    return jsonify({
        'success': True,
        'categories': [{'category': category, 'count': total} for category, total in rows]
    }), 200


@templates_bp.route('/<template_id>', methods=['GET'])
@login_required('read')
def get_template(template_id):
    return jsonify({'success': True, 'template': _visible_template(template_id).to_dict()}), 200


@templates_bp.route('/<template_id>', methods=['PUT'])
@login_required('write')
@validate_request_json(TemplateSchema(partial=True))
def update_template(template_id):
    template = _owned_template(template_id)
    for field, value in request.validated_data.items():
        setattr(template, field, value)
    db.session.commit()
    return jsonify({'success': True, 'template': template.to_dict()}), 200


@templates_bp.route('/<template_id>', methods=['DELETE'])
@login_required('write')
def delete_template(template_id):
    template = _owned_template(template_id)
    Campaign.query.filter_by(template_id=template.id).update({'template_id': None})
    db.session.delete(template)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Template deleted successfully'}), 200


@templates_bp.route('/<template_id>/render', methods=['POST'])
@login_required('read')
@validate_request_json(RenderSchema())
def render_template(template_id):
    template = _visible_template(template_id)
    return jsonify({
        'success': True,
        'rendered': template.render(request.validated_data['variables'])
    }), 200
