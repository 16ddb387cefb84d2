"""Local and S3 backups of server data directories."""