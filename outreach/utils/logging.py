import logging
import logging.config
import os


def setup_logging(app):
    """Configure application logging"""

    log_level = str(app.config.get('LOG_LEVEL', 'INFO')).upper()
    log_file = app.config.get('LOG_FILE')

    handlers = {
        'console': {
            'class': 'logging.StreamHandler',
            'level': log_level,
            'formatter': 'simple',
            'stream': 'ext://sys.stdout'
        }
    }
    handler_names = ['console']

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': log_level,
            'formatter': 'detailed',
            'filename': log_file,
            'maxBytes': 10485760,  # 10MB
            'backupCount': 5
        }
        handler_names.append('file')

    logging_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'detailed': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s [%(filename)s:%(lineno)d]'
            },
            'simple': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            }
        },
        'handlers': handlers,
        'loggers': {
            'outreach': {
                'level': log_level,
                'handlers': handler_names,
                'propagate': False
            },
            'signalwire': {
                'level': 'WARNING',
                'handlers': handler_names,
                'propagate': False
            }
        },
        'root': {
            'level': 'WARNING',
            'handlers': handler_names
        }
    }

    logging.config.dictConfig(logging_config)

    app.logger.setLevel(getattr(logging, log_level, logging.INFO))
    app.logger.info(f"Outreach backend logging configured - level: {log_level}")
