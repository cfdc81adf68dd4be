CRD_GROUP = "object.rook-s3-nano"
CRD_VERSION = "v1alpha1"
CRD_KIND = "ObjectStore"
CRD_PLURAL_OBJECTSTORE = "objectstores"

# lib-bucket-provisioner API consumed by the bucket controller
OBJECTBUCKET_GROUP = "objectbucket.io"
OBJECTBUCKET_VERSION = "v1alpha1"
OBJECTBUCKET_PLURAL_CLAIM = "objectbucketclaims"
OBJECTBUCKET_PLURAL_BUCKET = "objectbuckets"
